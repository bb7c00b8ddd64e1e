from __future__ import annotations

import asyncio
import sys

import pytest

from conftest import PASSWORD, BlockingSleep, FakeProcess, FakeSpawner, ScriptedCheck
from depot_cli.core import orchestrator as orchestrator_module
from depot_cli.core.orchestrator import DepotDownloaderOrchestrator, SessionMode, _Session
from depot_cli.exceptions import GuardRequiredError, InvalidArgumentError
from depot_cli.models.events import EventType
from depot_cli.models.results import ErrorCondition
from depot_cli.utils.redaction import Redactor

EMAIL_PROMPT = (
    "STEAM GUARD! Please enter the auth code sent to the email at g***@valve.com: "
)
MOBILE_PROMPT = "STEAM GUARD! Use the Steam Mobile App to confirm your sign in...\n"
MANIFEST_OUTPUT = (
    "Logging 'gabe' into Steam3...\n"
    "Got manifest request code for depot 3164500 from app 3164500, "
    "manifest 1111, result: 98765\n"
    "Got manifest request code for depot 3164501 from app 3164500, "
    "manifest 2222, result: 98766\n"
)


# --- Preflight and retry ---


def test_preflight_waits_out_running_client_then_spawns_once(
    make_orchestrator, sleep, credentials, tmp_path
):
    spawner = FakeSpawner(FakeProcess(stdout=["Download complete\n"]))
    check = ScriptedCheck(True, True, False, spawner=spawner)
    orchestrator = make_orchestrator(spawner, platform=check)

    result = asyncio.run(orchestrator.download_branch(credentials, tmp_path / "out"))

    assert result.ok
    assert sleep.delays[:3] == [0, 5, 15]
    assert check.spawns_seen == [0, 0, 0]
    assert len(spawner.calls) == 1


def test_preflight_gives_up_after_every_check_finds_client(
    make_orchestrator, sleep, credentials, tmp_path
):
    spawner = FakeSpawner()
    orchestrator = make_orchestrator(spawner, platform=ScriptedCheck(True))

    result = asyncio.run(orchestrator.download_branch(credentials, tmp_path / "out"))

    assert not result.ok
    assert result.condition is ErrorCondition.PLATFORM_PROCESS_CONFLICT
    assert sleep.delays == [0, 5, 15]
    assert spawner.calls == []


def test_async_platform_check_is_awaited(make_orchestrator, credentials, tmp_path):
    async def steam_running() -> bool:
        return True

    orchestrator = make_orchestrator(FakeSpawner(), platform=steam_running)
    result = asyncio.run(orchestrator.login(credentials))
    assert result.condition is ErrorCondition.PLATFORM_PROCESS_CONFLICT


def test_authentication_failure_is_retried(make_orchestrator, sleep, credentials, tmp_path):
    spawner = FakeSpawner(
        FakeProcess(stdout=["Login failed: InvalidPassword\n"], returncode=1),
        FakeProcess(stdout=["100.00% depot_3164501\n"], returncode=0),
    )
    orchestrator = make_orchestrator(spawner)

    result = asyncio.run(orchestrator.download_branch(credentials, tmp_path / "out"))

    assert result.ok
    assert result.attempts == 2
    # One preflight check, then the delays before attempt 1 and 2.
    assert sleep.delays == [0, 0, 5]


def test_client_conflict_output_is_retried_until_attempts_run_out(
    make_orchestrator, credentials, tmp_path
):
    spawner = FakeSpawner(
        *[
            FakeProcess(stderr=["Error: Steam is running, close it\n"], returncode=1)
            for _ in range(3)
        ]
    )
    orchestrator = make_orchestrator(spawner)

    result = asyncio.run(orchestrator.download_branch(credentials, tmp_path / "out"))

    assert not result.ok
    assert result.attempts == 3
    assert result.condition is ErrorCondition.PLATFORM_PROCESS_CONFLICT
    assert len(spawner.calls) == 3


def test_other_failures_abort_without_retry(make_orchestrator, credentials, tmp_path):
    spawner = FakeSpawner(
        FakeProcess(stderr=["Unhandled exception: disk full\n"], returncode=2)
    )
    orchestrator = make_orchestrator(spawner)

    result = asyncio.run(orchestrator.download_branch(credentials, tmp_path / "out"))

    assert not result.ok
    assert result.attempts == 1
    assert result.exit_code == 2
    assert result.condition is ErrorCondition.PROCESS_FAILED
    assert "disk full" in result.error


def test_download_arguments_are_passed_as_a_list(make_orchestrator, credentials, tmp_path):
    spawner = FakeSpawner(FakeProcess())
    orchestrator = make_orchestrator(spawner)

    asyncio.run(
        orchestrator.download_branch(
            credentials,
            tmp_path / "out dir",
            "beta",
            depots=[("3164501", "2222")],
        )
    )

    argv = spawner.calls[0]
    assert argv[1:5] == ["-app", "3164500", "-beta", "beta"]
    assert argv[argv.index("-password") + 1] == PASSWORD
    assert argv[argv.index("-dir") + 1] == str(tmp_path / "out dir")
    assert argv[argv.index("-depot") + 1 : argv.index("-depot") + 4] == [
        "3164501",
        "-manifest",
        "2222",
    ]


def test_malformed_arguments_raise_before_spawning(make_orchestrator, credentials, tmp_path):
    spawner = FakeSpawner()
    orchestrator = make_orchestrator(spawner)
    with pytest.raises(InvalidArgumentError):
        asyncio.run(orchestrator.download_branch(credentials, tmp_path, "beta; rm -rf /"))
    with pytest.raises(InvalidArgumentError):
        asyncio.run(orchestrator.login(credentials, guard_code="12 34"))
    assert spawner.calls == []


# --- Login and Steam Guard ---


def test_login_succeeds_on_success_phrase_and_stops_child(make_orchestrator, credentials):
    process = FakeProcess(stdout=["Logged 'gabe' into Steam3...\nLogged in as gabe\n"], hang=True)
    orchestrator = make_orchestrator(FakeSpawner(process))

    result = asyncio.run(orchestrator.login(credentials))

    assert result.ok
    assert process.terminated


def test_login_uses_manifest_only_mode(make_orchestrator, credentials):
    spawner = FakeSpawner(FakeProcess(returncode=0))
    orchestrator = make_orchestrator(spawner)

    result = asyncio.run(orchestrator.login(credentials))

    assert result.ok
    assert spawner.calls[0][-1] == "-manifest-only"
    assert "-beta" not in spawner.calls[0]


def test_login_failure_phrase_is_reported_redacted(make_orchestrator, credentials):
    process = FakeProcess(
        stdout=[f"Logging in with password {PASSWORD}\nInvalid password for gabe\n"],
        returncode=0,
    )
    orchestrator = make_orchestrator(FakeSpawner(process))
    events = []

    result = asyncio.run(orchestrator.login(credentials, on_event=events.append))

    assert not result.ok
    assert result.condition is ErrorCondition.AUTHENTICATION_FAILURE
    assert "Invalid password" in result.error
    assert all(PASSWORD not in (e.message or "") for e in events)
    assert any(e.type is EventType.OUTPUT and "***" in e.message for e in events)


def test_login_fails_fast_when_client_running(make_orchestrator, sleep, credentials):
    spawner = FakeSpawner()
    orchestrator = make_orchestrator(spawner, platform=ScriptedCheck(True))

    result = asyncio.run(orchestrator.login(credentials))

    assert result.condition is ErrorCondition.PLATFORM_PROCESS_CONFLICT
    assert sleep.delays == []
    assert spawner.calls == []


def test_login_times_out_and_terminates_child(make_orchestrator, credentials):
    process = FakeProcess(stdout=["Connecting to Steam3...\n"], hang=True)
    orchestrator = make_orchestrator(FakeSpawner(process), login_timeout=0.05)

    result = asyncio.run(orchestrator.login(credentials))

    assert result.condition is ErrorCondition.TIMEOUT
    assert process.terminated


def test_email_guard_without_code_requires_guard(make_orchestrator, credentials):
    process = FakeProcess(stdout=[EMAIL_PROMPT], hang=True)
    orchestrator = make_orchestrator(FakeSpawner(process))
    events = []

    result = asyncio.run(orchestrator.login(credentials, on_event=events.append))

    assert not result.ok
    assert result.requires_guard
    assert result.guard_type == "email"
    assert result.condition is ErrorCondition.GUARD_REQUIRED
    assert process.terminated
    guard_events = [e for e in events if e.type is EventType.STEAM_GUARD]
    assert len(guard_events) == 1
    assert guard_events[0].to_dict()["guardType"] == "email"
    with pytest.raises(GuardRequiredError) as excinfo:
        result.raise_for_error()
    assert excinfo.value.guard_type == "email"


def test_email_guard_code_is_written_to_stdin(make_orchestrator, credentials):
    process = FakeProcess(
        stdout=[EMAIL_PROMPT],
        hang=True,
        after_input=["Successfully logged in!\n"],
    )
    orchestrator = make_orchestrator(FakeSpawner(process))

    result = asyncio.run(orchestrator.login(credentials, guard_code="R7K2Q"))

    assert result.ok
    assert process.stdin.writes == [b"R7K2Q\n"]


def test_mobile_guard_without_confirmation_requires_guard(make_orchestrator, credentials, tmp_path):
    process = FakeProcess(stdout=[MOBILE_PROMPT], hang=True)
    orchestrator = make_orchestrator(FakeSpawner(process))

    result = asyncio.run(orchestrator.download_branch(credentials, tmp_path / "out"))

    assert result.requires_guard
    assert result.guard_type == "mobile"
    assert result.attempts == 1
    assert process.terminated


def test_mobile_guard_with_confirmation_keeps_running(make_orchestrator, credentials, tmp_path):
    process = FakeProcess(
        stdout=[MOBILE_PROMPT, "Logged in as gabe\n", "Download complete\n"],
        returncode=0,
    )
    orchestrator = make_orchestrator(FakeSpawner(process))
    events = []

    result = asyncio.run(
        orchestrator.download_branch(
            credentials, tmp_path / "out", confirm_mobile=True, on_event=events.append
        )
    )

    assert result.ok
    assert not process.terminated
    assert [e.guard_type for e in events if e.type is EventType.STEAM_GUARD] == ["mobile"]
    assert [e.value for e in events if e.type is EventType.PERCENT] == [100.0]


def test_email_prompt_split_across_reads_is_classified_as_email(
    make_orchestrator, credentials
):
    process = FakeProcess(
        stdout=[
            "STEAM GUARD! Please enter the auth code sen",
            "t to the email at g***@valve.com: ",
        ],
        hang=True,
    )
    orchestrator = make_orchestrator(FakeSpawner(process))

    result = asyncio.run(orchestrator.login(credentials))

    assert result.requires_guard
    assert result.guard_type == "email"


def test_unfinished_guard_prompt_settles_as_mobile_when_output_stops(
    make_orchestrator, credentials, monkeypatch
):
    monkeypatch.setattr(orchestrator_module, "GUARD_SETTLE_SECONDS", 0.01)
    process = FakeProcess(stdout=["STEAM GUARD! Use the Steam Mobile App to confirm"], hang=True)
    orchestrator = make_orchestrator(FakeSpawner(process))

    result = asyncio.run(orchestrator.login(credentials))

    assert result.requires_guard
    assert result.guard_type == "mobile"
    assert process.terminated


def test_unfinished_guard_prompt_at_exit_settles_as_mobile(make_orchestrator, credentials):
    process = FakeProcess(
        stdout=["STEAM GUARD! Use the Steam Mobile App to confirm"], returncode=1
    )
    orchestrator = make_orchestrator(FakeSpawner(process))

    result = asyncio.run(orchestrator.login(credentials))

    assert result.condition is ErrorCondition.GUARD_REQUIRED
    assert result.guard_type == "mobile"


# --- Concurrency and cancellation ---


def test_second_operation_is_rejected_and_first_can_be_cancelled(
    make_orchestrator, credentials, tmp_path
):
    process = FakeProcess(stdout=["Downloading depot 1 of 3\n"], hang=True)
    spawner = FakeSpawner(process)
    orchestrator = make_orchestrator(spawner)

    async def scenario():
        download = asyncio.create_task(
            orchestrator.download_branch(credentials, tmp_path / "out")
        )
        while not spawner.calls:
            await asyncio.sleep(0.001)
        assert orchestrator.busy
        second = await orchestrator.login(credentials)
        cancelled = await orchestrator.cancel()
        return second, cancelled, await download

    second, cancelled, first = asyncio.run(scenario())

    assert second.condition is ErrorCondition.OPERATION_IN_PROGRESS
    assert "already running" in second.error
    assert cancelled.ok
    assert first.condition is ErrorCondition.CANCELLED
    assert process.terminated
    assert len(spawner.calls) == 1
    assert not orchestrator.busy


def test_cancel_without_running_child(make_orchestrator):
    orchestrator = make_orchestrator(FakeSpawner())
    result = asyncio.run(orchestrator.cancel())
    assert not result.ok


def test_cancel_during_retry_backoff_stops_further_attempts(
    make_orchestrator, credentials, tmp_path
):
    spawner = FakeSpawner(
        FakeProcess(stdout=["Login failed: InvalidPassword\n"], returncode=1),
        FakeProcess(stdout=["Download complete\n"]),
    )

    async def scenario():
        sleep = BlockingSleep()
        orchestrator = make_orchestrator(spawner, sleep=sleep)
        download = asyncio.create_task(
            orchestrator.download_branch(credentials, tmp_path / "out")
        )
        await asyncio.wait_for(sleep.blocked.wait(), timeout=1)
        cancelled = await orchestrator.cancel()
        result = await asyncio.wait_for(download, timeout=1)
        return cancelled, result, orchestrator.busy

    cancelled, result, busy = asyncio.run(scenario())

    assert cancelled.ok
    assert result.condition is ErrorCondition.CANCELLED
    assert len(spawner.calls) == 1
    assert not busy


def test_cancel_during_preflight_wait_never_spawns(make_orchestrator, credentials, tmp_path):
    spawner = FakeSpawner()

    async def scenario():
        sleep = BlockingSleep()
        orchestrator = make_orchestrator(
            spawner, platform=ScriptedCheck(True), sleep=sleep
        )
        download = asyncio.create_task(
            orchestrator.download_branch(credentials, tmp_path / "out")
        )
        await asyncio.wait_for(sleep.blocked.wait(), timeout=1)
        cancelled = await orchestrator.cancel()
        return cancelled, await asyncio.wait_for(download, timeout=1), sleep.delays

    cancelled, result, delays = asyncio.run(scenario())

    assert cancelled.ok
    assert result.condition is ErrorCondition.CANCELLED
    assert delays == [0, 5]
    assert spawner.calls == []


def test_failure_phrase_early_in_long_output_still_classifies(
    make_orchestrator, credentials, tmp_path
):
    noise = ["Downloading chunk " + "x" * 1000 + "\n" for _ in range(40)]
    spawner = FakeSpawner(
        *[
            FakeProcess(stdout=["Login failed: InvalidPassword\n", *noise], returncode=1)
            for _ in range(3)
        ]
    )
    orchestrator = make_orchestrator(spawner)

    result = asyncio.run(orchestrator.download_branch(credentials, tmp_path / "out"))

    assert result.condition is ErrorCondition.AUTHENTICATION_FAILURE
    assert result.attempts == 3
    assert "Login failed" in result.error


def test_download_output_is_kept_as_a_bounded_tail():
    session = _Session(SessionMode.DOWNLOAD, Redactor([PASSWORD]), coalescer=None)
    for i in range(100):
        session.record(f"line {i} " + "x" * 1000 + "\n")

    assert session.chunks == []
    assert len(session.text) <= orchestrator_module._OUTPUT_TAIL
    assert session.last_line().startswith("line 99 ")


# --- Manifest lookup ---


def test_fetch_manifest_ids_selects_priority_depot(make_orchestrator, credentials):
    spawner = FakeSpawner(FakeProcess(stdout=[MANIFEST_OUTPUT]))
    orchestrator = make_orchestrator(spawner)

    result = asyncio.run(orchestrator.fetch_manifest_ids(credentials, "beta"))

    assert result.ok
    assert result.manifest_ids == {"3164500": "1111", "3164501": "2222"}
    assert result.primary_manifest_id == "2222"
    assert "-manifest-only" in spawner.calls[0]


def test_fetch_manifest_ids_without_ids_is_not_an_error(make_orchestrator, credentials):
    orchestrator = make_orchestrator(FakeSpawner(FakeProcess(stdout=["Done\n"])))

    result = asyncio.run(orchestrator.fetch_manifest_ids(credentials))

    assert result.ok
    assert result.primary_manifest_id is None


# --- Binary validation ---


def test_missing_binary_is_reported(make_orchestrator, credentials, tmp_path):
    orchestrator = make_orchestrator(
        FakeSpawner(), downloader_path=tmp_path / "nowhere" / "DepotDownloader"
    )

    validation = asyncio.run(orchestrator.validate_installation())
    login = asyncio.run(orchestrator.login(credentials))

    assert validation.condition is ErrorCondition.MISSING_BINARY
    assert login.condition is ErrorCondition.MISSING_BINARY


def test_version_check_accepts_self_identifying_output(make_orchestrator):
    process = FakeProcess(stdout=["DepotDownloader v2.7.4+abc\n"], returncode=1)
    orchestrator = make_orchestrator(FakeSpawner(process))

    validation = asyncio.run(orchestrator.validate_installation())

    assert validation.ok
    assert validation.version == "2.7.4"


def test_version_check_times_out(make_orchestrator):
    process = FakeProcess(hang=True)
    orchestrator = make_orchestrator(FakeSpawner(process), probe_timeout=0.05)

    validation = asyncio.run(orchestrator.validate_installation())

    assert validation.condition is ErrorCondition.TIMEOUT
    assert process.terminated


def test_version_check_runs_a_real_process():
    orchestrator = DepotDownloaderOrchestrator(downloader_path=sys.executable)

    validation = asyncio.run(orchestrator.validate_installation())

    assert validation.ok
    assert str(validation.executable) == sys.executable
