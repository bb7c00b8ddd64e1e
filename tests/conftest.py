from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from depot_cli.core.binary import Credentials
from depot_cli.core.orchestrator import DepotDownloaderOrchestrator

PASSWORD = "hunter2-Secret!"

APP_MANIFEST = """
"AppState"
{
	"appid"		"3164500"
	"name"		"Schedule I"
	"StateFlags"		"4"
	"buildid"		"18234567"
	"LastUpdated"		"1735689600"
	"InstalledDepots"
	{
		"3164500"
		{
			"manifest"		"1111111111111111111"
			"size"		"1024"
		}
		"3164501"
		{
			"manifest"		"2222222222222222222"
			"size"		"4096"
		}
	}
	"UserConfig"
	{
		"BetaKey"		"beta"
	}
}
"""


def _encode(chunk: bytes | str) -> bytes:
    return chunk.encode("utf-8") if isinstance(chunk, str) else chunk


class FakeStream:
    """Hands out scripted chunks, then blocks until the process is done."""

    def __init__(self, process: FakeProcess, chunks):
        self.process = process
        self.chunks = [_encode(c) for c in chunks]

    async def read(self, n: int = -1) -> bytes:
        while True:
            if self.chunks:
                await asyncio.sleep(0)
                return self.chunks.pop(0)
            if not self.process.running:
                return b""
            await asyncio.sleep(0.001)


class FakeStdin:
    def __init__(self, process: FakeProcess):
        self.process = process
        self.writes: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.writes.append(data)
        self.process.answered()

    async def drain(self) -> None:
        await asyncio.sleep(0)


class FakeProcess:
    """
    Scripted stand-in for an asyncio subprocess.

    With `hang=True` the process keeps running after its output until it is
    terminated or, when `after_input` is given, until something is written
    to stdin (which appends `after_input` to stdout and lets it exit).
    """

    def __init__(
        self,
        stdout=(),
        stderr=(),
        returncode: int = 0,
        hang: bool = False,
        after_input=None,
        input_returncode: int = 0,
    ):
        self.stdout = FakeStream(self, stdout)
        self.stderr = FakeStream(self, stderr)
        self.stdin = FakeStdin(self)
        self.returncode: int | None = None
        self.hang = hang
        self.after_input = after_input
        self.input_returncode = input_returncode
        self._final = returncode
        self.terminated = False
        self.killed = False

    @property
    def running(self) -> bool:
        return self.returncode is None and self.hang

    def answered(self) -> None:
        if self.after_input is not None:
            self.stdout.chunks.extend(_encode(c) for c in self.after_input)
            self._final = self.input_returncode
            self.hang = False

    async def wait(self) -> int:
        while self.running:
            await asyncio.sleep(0.001)
        if self.returncode is None:
            self.returncode = self._final
        return self.returncode

    async def communicate(self):
        output = b"".join(self.stdout.chunks)
        self.stdout.chunks = []
        await self.wait()
        return output, b""

    def terminate(self) -> None:
        self.terminated = True
        if self.returncode is None:
            self.returncode = -15

    def kill(self) -> None:
        self.killed = True
        if self.returncode is None:
            self.returncode = -9


class FakeSpawner:
    """Returns the queued fake processes in order and records every argv."""

    def __init__(self, *processes: FakeProcess):
        self.processes = list(processes)
        self.calls: list[list[str]] = []

    async def __call__(self, *args, **kwargs):
        self.calls.append([str(a) for a in args])
        if not self.processes:
            raise AssertionError(f"Unexpected spawn: {args}")
        return self.processes.pop(0)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class BlockingSleep:
    """Really sleeps for non-zero delays and flags when it starts doing so."""

    def __init__(self):
        self.delays: list[float] = []
        self.blocked = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if delay:
            self.blocked.set()
        await asyncio.sleep(delay)


class ScriptedCheck:
    """Platform-running check answering from a script; repeats the last answer."""

    def __init__(self, *answers: bool, spawner: FakeSpawner | None = None):
        self.answers = list(answers) or [False]
        self.spawner = spawner
        self.calls = 0
        self.spawns_seen: list[int] = []

    def __call__(self) -> bool:
        index = min(self.calls, len(self.answers) - 1)
        self.calls += 1
        if self.spawner is not None:
            self.spawns_seen.append(len(self.spawner.calls))
        return self.answers[index]


@pytest.fixture
def credentials() -> Credentials:
    return Credentials("gabe", PASSWORD)


@pytest.fixture
def downloader(tmp_path: Path) -> Path:
    exe = tmp_path / "tools" / "DepotDownloader"
    exe.parent.mkdir()
    exe.write_text("")
    return exe


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_orchestrator(downloader: Path, sleep: RecordingSleep):
    def _make(spawner: FakeSpawner, platform=None, **kwargs) -> DepotDownloaderOrchestrator:
        return DepotDownloaderOrchestrator(
            downloader_path=kwargs.pop("downloader_path", downloader),
            spawn=spawner,
            sleep=kwargs.pop("sleep", sleep),
            is_platform_running=platform or ScriptedCheck(False),
            progress_interval=0.001,
            **kwargs,
        )

    return _make
