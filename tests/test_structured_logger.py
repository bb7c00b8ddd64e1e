from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from conftest import PASSWORD, FakeProcess, FakeSpawner
from depot_cli.utils.redaction import Redactor, mask_arguments
from depot_cli.utils.structured_logger import StructuredLogger, create_structured_logger


def _entries(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


def test_json_entries_are_scrubbed(tmp_path):
    logger = StructuredLogger(
        "depot_cli.test", log_dir=tmp_path, enable_console=False, redactor=Redactor(["hunter2"])
    )
    logger.set_session_context(user="gabe")
    logger.info(
        "download_attempt_started",
        args=["-password", "hunter2"],
        note="retry with hunter2",
        path=Path("/games"),
    )
    logger.close()

    [entry] = _entries(logger.json_log_path)
    assert entry["level"] == "INFO"
    assert entry["event"] == "download_attempt_started"
    assert entry["args"] == ["-password", "***"]
    assert entry["note"] == "retry with ***"
    assert entry["path"] == str(Path("/games"))
    assert entry["user"] == "gabe"
    assert "session_id" in entry


def test_json_disabled_without_directory():
    logger = StructuredLogger("depot_cli.test", log_dir=None)
    assert logger.json_log_path is None
    logger.error("anything", detail="ignored")
    logger.close()


def test_console_output_escapes_markup(caplog):
    caplog.set_level(logging.INFO, logger="depot_cli.events")
    base, orchestrator_log, _ = create_structured_logger(
        enable_console=True, redactor=Redactor(["hunter2"])
    )

    orchestrator_log.attempt_started(
        "download", 1, mask_arguments(["-username", "gabe", "-password", "hunter2"])
    )
    base.close()

    assert "hunter2" not in caplog.text
    assert "\\[download_attempt_started]" in caplog.text
    assert "operation=download" in caplog.text


def test_migration_events(tmp_path):
    base, _, migration_log = create_structured_logger(tmp_path, enable_json=True)
    migration_log.started("beta-branch", tmp_path / "beta-branch", "manifest_1")
    migration_log.failed("beta-branch", "disk full")
    migration_log.rollback_completed(restored=1, errors=0)
    base.close()

    events = [e["event"] for e in _entries(base.json_log_path)]
    assert events == ["migration_started", "migration_failed", "rollback_completed"]


def test_orchestrator_attempts_never_log_the_password(make_orchestrator, credentials, tmp_path):
    base, orchestrator_log, _ = create_structured_logger(
        tmp_path / "logs", enable_json=True, redactor=Redactor([PASSWORD])
    )
    spawner = FakeSpawner(
        FakeProcess(stdout=[f"Login failed: invalid password {PASSWORD}\n"], returncode=1),
        FakeProcess(stdout=["Download complete\n"]),
    )
    orchestrator = make_orchestrator(spawner, event_log=orchestrator_log)

    result = asyncio.run(orchestrator.download_branch(credentials, tmp_path / "out"))
    base.close()

    assert result.ok
    raw = base.json_log_path.read_text()
    assert PASSWORD not in raw
    events = [e["event"] for e in _entries(base.json_log_path)]
    assert events == [
        "download_attempt_started",
        "download_attempt_failed",
        "download_attempt_started",
        "download_completed",
    ]
