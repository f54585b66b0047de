from __future__ import annotations

import json
from pathlib import Path

import pytest

from longform.cli import _build_config, _build_generator, build_parser, main
from longform.coherence import JsonFileSessionStore, Session, SessionKind, SessionStatus, decode_sse


def _generate_args(sessions: Path, *extra: str) -> list[str]:
    return [
        "generate",
        "--subject-id",
        "hume",
        "--subject-label",
        "Hume",
        "--prompt",
        "Is causation ever observed?",
        "--target-words",
        "400",
        "--words-per-chunk",
        "200",
        "--chunk-delay",
        "0.01",
        "--seed",
        "7",
        "--sessions-dir",
        str(sessions),
        *extra,
    ]


def _only_session(sessions: Path) -> Session:
    store = JsonFileSessionStore(sessions)
    (session_id,) = store.list_sessions()
    return store.load(session_id)


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["resume", "abc"])

    assert args.command == "resume"
    assert args.provider == "mock"
    assert args.retry_failed is False
    assert args.sse is False


def test_parser_rejects_non_positive_target() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(
            ["generate", "--subject-id", "x", "--subject-label", "X", "--prompt", "p", "--target-words", "0"]
        )


def test_generate_with_mock_provider(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(_generate_args(tmp_path))

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "--- CHUNK 1/2" in output
    assert "--- CHUNK 2/2" in output
    assert "Status: PASS" in output

    session = _only_session(tmp_path)
    assert session.status is SessionStatus.COMPLETE
    assert session.model == "mock-latest"
    assert session.skeleton is not None and session.skeleton.fallback is False
    assert [chunk.index for chunk in session.chunks] == [0, 1]
    assert session.actual_words >= 400


def test_generate_sse_framing(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(_generate_args(tmp_path, "--sse"))

    assert exit_code == 0
    frames = [line for line in capsys.readouterr().out.splitlines() if line]
    assert frames[-1] == "data: [DONE]"
    first = decode_sse(frames[0])
    assert first is not None
    assert first.kind.value == "session_started"
    assert first.session_id == _only_session(tmp_path).id


def test_show_prints_session_json(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    main(_generate_args(tmp_path))
    session = _only_session(tmp_path)
    capsys.readouterr()

    exit_code = main(["show", session.id, "--sessions-dir", str(tmp_path)])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["id"] == session.id
    assert payload["status"] == "complete"
    assert payload["report"]["coherence_score"] == "pass"

    assert main(["show", session.id, "--text", "--sessions-dir", str(tmp_path)]) == 0
    document = capsys.readouterr().out
    assert document.count("\n\n") == 1
    assert len(document.split()) == session.actual_words


def test_resume_failed_session_requires_flag(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    store = JsonFileSessionStore(tmp_path)
    store.create(
        Session(
            id="stalled",
            kind=SessionKind.DEBATE,
            subject_id="hume",
            subject_label="Hume",
            user_prompt="Is causation ever observed?",
            target_words=200,
        )
    )
    store.update("stalled", status=SessionStatus.FAILED, error_message="upstream timeout")

    exit_code = main(["resume", "stalled", "--sessions-dir", str(tmp_path)])

    assert exit_code == 1
    assert "Session failed: upstream timeout" in capsys.readouterr().out

    exit_code = main(["resume", "stalled", "--retry-failed", "--sessions-dir", str(tmp_path)])

    assert exit_code == 0
    session = store.load("stalled")
    assert session.status is SessionStatus.COMPLETE
    assert session.error_message is None


def test_unknown_session_reports_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(["show", "missing", "--sessions-dir", str(tmp_path)])

    assert exit_code == 1
    assert "Error:" in capsys.readouterr().err


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 0
    assert "usage: longform" in capsys.readouterr().out


def test_langchain_provider_uses_configured_key_env(monkeypatch: pytest.MonkeyPatch, dummy_chat_model) -> None:
    monkeypatch.setenv("LONGFORM_API_KEY_ENV", "TEAM_OPENAI_KEY")
    monkeypatch.setenv("TEAM_OPENAI_KEY", "team-key")
    monkeypatch.setenv("OPENAI_API_KEY", "vendor-key")
    args = build_parser().parse_args(["resume", "abc", "--provider", "langchain", "--model", "gpt-4o"])

    provider = _build_generator(args, _build_config(args), args.model)

    assert provider.settings.api_key == "team-key"
    assert provider._client.kwargs["api_key"] == "team-key"


def test_langchain_provider_rejects_unknown_model(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(_generate_args(tmp_path, "--provider", "langchain", "--model", "llama-3"))

    assert exit_code == 1
    assert "Unknown model 'llama-3'" in capsys.readouterr().err
