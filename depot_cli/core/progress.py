"""
Turns raw downloader output into a bounded stream of progress events.

`parse_percent` extracts a completion percentage from one line of output.
`ProgressCoalescer` buffers output and flushes it to the listener at most
once per interval: the latest percentage inside a window wins and earlier
ones are dropped, and a percentage lower than one already emitted is never
sent within the same run.
"""

import asyncio
import logging
import re
from typing import Callable, Optional

from depot_cli.models.events import EventType, ProgressEvent, ProgressListener
from depot_cli.utils.redaction import Redactor

log = logging.getLogger(__name__)

_ANSI = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_DEPOTS = re.compile(r"Downloading depot (\d+) of (\d+)", re.IGNORECASE)


def _group_percent(match: re.Match) -> float:
    return float(match.group(1))


def _depot_ratio(match: re.Match) -> Optional[float]:
    current, total = int(match.group(1)), int(match.group(2))
    return current / total * 100 if total > 0 else None


PercentMatcher = tuple[re.Pattern, Callable[[re.Match], Optional[float]]]

# Ordered by specificity; the first matcher that hits a line decides.
PERCENT_MATCHERS: tuple[PercentMatcher, ...] = (
    (re.compile(r"^\s*(\d{1,3}(?:\.\d{1,2})?)%(?:\s|$)"), _group_percent),
    (re.compile(r"\((\d+(?:\.\d+)?)%\)"), _group_percent),
    (re.compile(r"progress\s*:?\s*(\d+(?:\.\d+)?)%", re.IGNORECASE), _group_percent),
    (re.compile(r"(\d+(?:\.\d+)?)%"), _group_percent),
    (_DEPOTS, _depot_ratio),
    (
        re.compile(
            r"download.*complete|all.*depots?.*downloaded|total downloaded:",
            re.IGNORECASE,
        ),
        lambda _match: 100.0,
    ),
)


def clean_output(text: str) -> str:
    """Strips ANSI escapes and turns carriage-return redraws into lines."""
    return _ANSI.sub("", text).replace("\r\n", "\n").replace("\r", "\n")


def parse_percent(line: str) -> Optional[float]:
    for pattern, convert in PERCENT_MATCHERS:
        if match := pattern.search(line):
            value = convert(match)
            if value is not None:
                return max(0.0, min(100.0, value))
    return None


class ProgressCoalescer:
    """
    Buffers output per stream and emits events on a fixed cadence.

    Args:
        listener: Receives the events; None discards everything.
        redactor: Applied to each complete line before it is buffered.
        interval: Seconds between flushes.
        track_percent: Parse percentages (downloads only).
    """

    def __init__(
        self,
        listener: Optional[ProgressListener],
        redactor: Redactor,
        interval: float = 0.05,
        track_percent: bool = True,
    ):
        self.listener = listener
        self.redactor = redactor
        self.interval = interval
        self.track_percent = track_percent

        self._partial = {"stdout": "", "stderr": ""}
        self._pending = {"stdout": [], "stderr": []}
        self._pending_percent: Optional[float] = None
        self._last_percent: Optional[float] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

    @property
    def last_percent(self) -> Optional[float]:
        return self._last_percent

    def feed(self, text: str, stream: str = "stdout") -> None:
        if self._closed:
            return
        data = self._partial[stream] + clean_output(text)
        *lines, self._partial[stream] = data.split("\n")
        for line in lines:
            self._take_line(line, stream)
        self._schedule()

    def _take_line(self, line: str, stream: str) -> None:
        line = self.redactor(line.rstrip())
        if not line.strip():
            return
        self._pending[stream].append(line)
        if self.track_percent and (value := parse_percent(line)) is not None:
            self._pending_percent = value

    def _schedule(self) -> None:
        if self.listener is None:
            self.flush()
            return
        if self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._timer = loop.call_later(self.interval, self.flush)

    def _send(self, event: ProgressEvent) -> None:
        if self.listener is None:
            return
        try:
            self.listener(event)
        except Exception as e:
            log.warning(f"Progress listener raised: {e}")

    def emit(self, event: ProgressEvent) -> None:
        """Sends an out-of-band event, flushing buffered output first to keep order."""
        self.flush()
        self._send(event)

    def flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if stdout := self._pending["stdout"]:
            self._send(ProgressEvent(EventType.OUTPUT, message="\n".join(stdout)))
            self._pending["stdout"] = []
        if stderr := self._pending["stderr"]:
            self._send(ProgressEvent(EventType.ERROR, message="\n".join(stderr)))
            self._pending["stderr"] = []

        value, self._pending_percent = self._pending_percent, None
        if value is not None and (
            self._last_percent is None or value > self._last_percent
        ):
            self._last_percent = value
            self._send(ProgressEvent(EventType.PERCENT, value=round(value, 2)))

    def close(self) -> None:
        """Processes trailing partial lines and performs the final flush."""
        if self._closed:
            return
        for stream, rest in self._partial.items():
            if rest:
                self._take_line(rest, stream)
            self._partial[stream] = ""
        self.flush()
        self._closed = True
