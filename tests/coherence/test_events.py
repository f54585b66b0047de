from __future__ import annotations

import json

import pytest

from longform.coherence.events import EventKind, ProgressEvent, decode_sse


def test_event_sse_framing() -> None:
    event = ProgressEvent(kind=EventKind.CHUNK_COMPLETE, session_id="s1", text="saved", data={"index": 0})

    frame = event.to_sse()

    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    payload = json.loads(frame[len("data: ") :])
    assert payload == {"kind": "chunk_complete", "session_id": "s1", "text": "saved", "data": {"index": 0}}


def test_done_sentinel_framing() -> None:
    assert ProgressEvent.done("s1").to_sse() == "data: [DONE]\n\n"


def test_decode_sse_round_trips_events() -> None:
    event = ProgressEvent(kind=EventKind.FRAGMENT, session_id="s1", text=" more words")

    assert decode_sse(event.to_sse()) == event
    assert decode_sse("data: [DONE]").kind is EventKind.DONE


@pytest.mark.parametrize(
    "line",
    [
        "",
        ": keep-alive comment",
        "data: {not json",
        'data: "just a string"',
        'data: {"kind": "telemetry", "text": "unknown kind"}',
    ],
)
def test_decode_sse_ignores_unusable_lines(line: str) -> None:
    assert decode_sse(line) is None
