"""Command line interface for the longform coherence pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Iterable, Sequence, TextIO

from dotenv import load_dotenv

from .coherence import (
    CoherenceOrchestrator,
    CoherenceRequest,
    EventKind,
    JsonContentRetriever,
    JsonFileSessionStore,
    ProgressEvent,
    SessionKind,
    SessionStatus,
)
from .config import CoherenceConfig, LongformConfig
from .llm import MockTextGenerator, TextGenerator, build_provider, resolve_backend

__all__ = ["main", "build_parser"]

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="longform",
        description=(
            "Generate long-form text in bounded chunks held together by a shared "
            "skeleton. Sessions are persisted and can be resumed."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LONGFORM_LOG_LEVEL", "WARNING"),
        help="Logging level (DEBUG, INFO, WARNING, ...).",
    )
    subparsers = parser.add_subparsers(dest="command")

    generate = subparsers.add_parser(
        "generate",
        help="Start a new session and stream its progress.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    generate.add_argument("--subject-id", dest="subject_id", required=True, help="Identifier of the subject or author.")
    generate.add_argument("--subject-label", dest="subject_label", required=True, help="Display name used in prompts.")
    generate.add_argument("--prompt", required=True, help="The user request to answer.")
    generate.add_argument(
        "--target-words",
        dest="target_words",
        type=_positive_int,
        required=True,
        help="Requested output length in words.",
    )
    generate.add_argument(
        "--kind",
        choices=[kind.value for kind in SessionKind],
        default=SessionKind.DOCUMENT.value,
        help="Session kind.",
    )
    generate.add_argument("--topic", default=None, help="Retrieval query; defaults to the prompt.")
    generate.add_argument("--corpus", default=None, help="JSON corpus file used as the content source.")
    _register_shared_arguments(generate)

    resume = subparsers.add_parser(
        "resume",
        help="Continue an interrupted session.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    resume.add_argument("session_id", help="Session to resume.")
    resume.add_argument(
        "--retry-failed",
        dest="retry_failed",
        action="store_true",
        help="Allow a failed session to be retried.",
    )
    resume.add_argument("--corpus", default=None, help="JSON corpus file used if the skeleton must be rebuilt.")
    _register_shared_arguments(resume)

    show = subparsers.add_parser(
        "show",
        help="Print a stored session as JSON.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    show.add_argument("session_id", help="Session to display.")
    show.add_argument("--sessions-dir", dest="sessions_dir", default=None, help="Directory holding session files.")
    show.add_argument("--text", action="store_true", help="Print the stitched document instead of the JSON record.")
    return parser


def _register_shared_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--provider",
        choices=["mock", "langchain"],
        default=os.getenv("LONGFORM_PROVIDER", "mock"),
        help="Generation backend.",
    )
    parser.add_argument("--model", default=None, help="Model identifier (gpt-4o, claude-sonnet-4, ...).")
    parser.add_argument("--base-url", dest="base_url", default=None, help="Optional base URL for compatible APIs.")
    parser.add_argument("--temperature", type=float, default=None, help="Sampling temperature override.")
    parser.add_argument("--max-tokens", dest="max_tokens", type=int, default=None, help="Response token cap.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for deterministic mock output.")
    parser.add_argument("--enhanced", action="store_true", help="Use the creative elaboration template.")
    parser.add_argument(
        "--words-per-chunk",
        dest="words_per_chunk",
        type=_positive_int,
        default=None,
        help="Nominal words per chunk.",
    )
    parser.add_argument(
        "--chunk-delay",
        dest="chunk_delay",
        type=float,
        default=None,
        help="Seconds to pause between chunks.",
    )
    parser.add_argument("--sessions-dir", dest="sessions_dir", default=None, help="Directory holding session files.")
    parser.add_argument("--sse", action="store_true", help="Write events using server-sent-event framing.")


def _positive_int(token: str) -> int:
    try:
        value = int(token)
    except ValueError as exc:  # pragma: no cover - argparse formatting
        raise argparse.ArgumentTypeError(f"Invalid integer value: {token}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("Values must be positive integers")
    return value


def _build_config(args: argparse.Namespace) -> LongformConfig:
    config = LongformConfig()
    if getattr(args, "sessions_dir", None):
        config = config.with_session_root(Path(args.sessions_dir))
    if hasattr(args, "provider"):
        config.coherence = CoherenceConfig.from_env(
            words_per_chunk=args.words_per_chunk,
            chunk_delay_seconds=args.chunk_delay,
            enhanced=True if args.enhanced else None,
        )
    return config


def _build_generator(args: argparse.Namespace, config: LongformConfig, model: str | None) -> TextGenerator:
    if args.provider == "mock":
        return MockTextGenerator(model=model or "mock-latest", seed=args.seed)
    resolved_model = model or config.llm.model
    kwargs = config.as_provider_kwargs(
        model=resolved_model,
        api_key=config.llm.resolve_api_key(resolve_backend(resolved_model)),
        base_url=args.base_url,
        temperature=args.temperature,
        max_tokens=args.max_tokens,
    )
    return build_provider(**{key: value for key, value in kwargs.items() if value is not None})  # type: ignore[arg-type]


def _write_events(events: Iterable[ProgressEvent], *, sse: bool, out: TextIO) -> ProgressEvent | None:
    failure: ProgressEvent | None = None
    for event in events:
        if event.kind is EventKind.FAILURE:
            failure = event
        if sse:
            out.write(event.to_sse())
        elif event.kind is EventKind.FRAGMENT:
            out.write(event.text)
        elif event.kind is EventKind.DONE:
            out.write("\n")
        else:
            out.write(f"\n{event.text.rstrip()}\n")
        out.flush()
    return failure


def _run_generate(args: argparse.Namespace, out: TextIO) -> int:
    config = _build_config(args)
    store = JsonFileSessionStore(config.session_root)
    generator = _build_generator(args, config, args.model)
    retriever = JsonContentRetriever(args.corpus) if args.corpus else None
    orchestrator = CoherenceOrchestrator(generator, store, config=config.coherence, retriever=retriever)
    request = CoherenceRequest(
        kind=args.kind,
        subject_id=args.subject_id,
        subject_label=args.subject_label,
        user_prompt=args.prompt,
        target_words=args.target_words,
        topic=args.topic,
        enhanced=True if args.enhanced else None,
    )
    failure = _write_events(orchestrator.generate(request), sse=args.sse, out=out)
    return 1 if failure is not None else 0


def _run_resume(args: argparse.Namespace, out: TextIO) -> int:
    config = _build_config(args)
    store = JsonFileSessionStore(config.session_root)
    session = store.load(args.session_id)
    model = args.model or (session.model if args.provider == "langchain" else None)
    generator = _build_generator(args, config, model)
    retriever = JsonContentRetriever(args.corpus) if args.corpus else None
    orchestrator = CoherenceOrchestrator(generator, store, config=config.coherence, retriever=retriever)
    events = orchestrator.resume(args.session_id, retry_failed=args.retry_failed)
    failure = _write_events(events, sse=args.sse, out=out)
    return 1 if failure is not None else 0


def _run_show(args: argparse.Namespace, out: TextIO) -> int:
    config = _build_config(args)
    store = JsonFileSessionStore(config.session_root)
    session = store.load(args.session_id)
    if args.text:
        out.write(session.full_text() + "\n")
    else:
        out.write(json.dumps(session.model_dump(mode="json"), ensure_ascii=False, indent=2) + "\n")
    return 1 if session.status is SessionStatus.FAILED else 0


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    command_map = {
        "generate": _run_generate,
        "resume": _run_resume,
        "show": _run_show,
    }
    runner = command_map.get(args.command)
    if runner is None:
        parser.print_help()
        return 0

    try:
        return runner(args, sys.stdout)
    except (FileNotFoundError, ValueError, RuntimeError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
