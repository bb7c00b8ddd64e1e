from __future__ import annotations

import asyncio

import pytest

from depot_cli.core.progress import ProgressCoalescer, clean_output, parse_percent
from depot_cli.models.events import EventType, ProgressEvent
from depot_cli.utils.redaction import Redactor


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        (" 12.50% depot_3164501/Game_Data/level0", 12.5),
        ("Pre-allocating files (42%)", 42.0),
        ("Progress: 7%", 7.0),
        ("chunk 3 done, now at 88.1% overall", 88.1),
        ("Downloading depot 2 of 4", 50.0),
        ("Total downloaded: 12345 bytes", 100.0),
        ("Download complete", 100.0),
        ("Connecting to Steam3...", None),
        ("Downloading depot 1 of 0", None),
    ],
)
def test_parse_percent(line, expected):
    assert parse_percent(line) == expected


def test_parse_percent_clamps_to_hundred():
    assert parse_percent("(250%)") == 100.0


def test_leading_percent_wins_over_later_matchers():
    # Both a leading percentage and a depot ratio are present.
    assert parse_percent("25% Downloading depot 3 of 4") == 25.0


def test_clean_output_strips_ansi_and_carriage_returns():
    assert clean_output("\x1b[32m10%\x1b[0m\r20%\r\n") == "10%\n20%\n"


def _collect(events: list[ProgressEvent], kind: EventType) -> list:
    return [e.value if kind is EventType.PERCENT else e.message for e in events if e.type is kind]


def test_coalescer_keeps_latest_percent_in_a_window():
    events: list[ProgressEvent] = []

    async def scenario():
        coalescer = ProgressCoalescer(events.append, Redactor(), interval=0.05)
        coalescer.feed("Downloading depot 2 of 4\n")
        coalescer.feed("(55%)\n")
        coalescer.feed("Download complete\n")
        await asyncio.sleep(0.1)
        coalescer.close()

    asyncio.run(scenario())

    assert _collect(events, EventType.PERCENT) == [100.0]
    assert _collect(events, EventType.OUTPUT) == [
        "Downloading depot 2 of 4\n(55%)\nDownload complete"
    ]


def test_coalescer_never_emits_a_lower_percent():
    events: list[ProgressEvent] = []
    coalescer = ProgressCoalescer(events.append, Redactor(), interval=0.05)

    for chunk in ["Downloading depot 2 of 4\n", "(55%)\n", "Downloading depot 1 of 4\n", "Download complete\n"]:
        coalescer.feed(chunk)
        coalescer.flush()
    coalescer.close()

    assert _collect(events, EventType.PERCENT) == [50.0, 55.0, 100.0]
    assert coalescer.last_percent == 100.0


def test_coalescer_splits_streams_and_redacts_whole_lines():
    events: list[ProgressEvent] = []
    coalescer = ProgressCoalescer(events.append, Redactor(["s3cret"]), track_percent=False)

    coalescer.feed("user pass s3", "stdout")
    coalescer.feed("cret ok\n", "stdout")
    coalescer.feed("warning: 5%\n", "stderr")
    coalescer.close()

    assert _collect(events, EventType.OUTPUT) == ["user pass *** ok"]
    assert _collect(events, EventType.ERROR) == ["warning: 5%"]
    assert _collect(events, EventType.PERCENT) == []


def test_emit_flushes_buffered_output_first():
    events: list[ProgressEvent] = []
    coalescer = ProgressCoalescer(events.append, Redactor(), interval=10)

    coalescer.feed("before guard\n")
    coalescer.emit(ProgressEvent(EventType.STEAM_GUARD, message="code?", guard_type="email"))
    coalescer.close()

    assert [e.type for e in events] == [EventType.OUTPUT, EventType.STEAM_GUARD]


def test_close_flushes_trailing_partial_line():
    events: list[ProgressEvent] = []
    coalescer = ProgressCoalescer(events.append, Redactor())

    coalescer.feed("Enter code: ")
    coalescer.close()
    coalescer.feed("ignored after close\n")

    assert _collect(events, EventType.OUTPUT) == ["Enter code:"]


def test_listener_errors_do_not_break_the_stream():
    def broken(event):
        raise RuntimeError("listener bug")

    coalescer = ProgressCoalescer(broken, Redactor())
    coalescer.feed("50%\n")
    coalescer.close()
    assert coalescer.last_percent == 50.0


def test_event_wire_schema():
    assert ProgressEvent(EventType.PERCENT, value=55.0).to_dict() == {
        "type": "percent",
        "value": 55.0,
    }
    assert ProgressEvent(
        EventType.STEAM_GUARD, message="check your email", guard_type="email"
    ).to_dict() == {"type": "steam-guard", "message": "check your email", "guardType": "email"}
