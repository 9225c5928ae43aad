"""Unit tests for queue-backed JSON-lines logging and the structlog bridge."""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import structlog

from maintenance_orchestrator.observability.logging import (
    LoggingConfig,
    correlation_scope,
    current_correlation,
    flush_logging,
    get_active_logging_handle,
    setup_logging,
    shutdown_logging,
    start_run_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _read_events(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def test_setup_logging_writes_run_scoped_json_lines(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_level": "INFO", "log_to_stdout": False}, run_id="cmp-run-1", log_dir=tmp_path
    )

    handle.logger.info("hello", extra={"operation": "chkdsk-scan", "attempt": 1})
    handle.logger.debug("filtered out")
    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "cmp-run-1" / "maintenance.jsonl"
    events = _read_events(handle.log_path)
    assert len(events) == 1
    event = events[0]
    assert event["event"] == "hello"
    assert event["level"] == "INFO"
    assert event["run_id"] == "cmp-run-1"
    assert event["operation"] == "chkdsk-scan"
    assert event["attempt"] == 1
    assert str(event["timestamp"]).endswith("Z")


def test_structlog_events_share_the_run_sink(tmp_path: Path) -> None:
    handle = setup_logging({"log_level": "DEBUG"}, run_id="cmp-run-2", log_dir=tmp_path)
    logger = structlog.get_logger("maintenance_orchestrator.campaign.step_runner")

    logger.info("step_classified", operation="sfc-verifyonly", code=1, rule_index=0)
    shutdown_logging(handle)

    events = _read_events(handle.log_path)
    assert [event["event"] for event in events] == ["step_classified"]
    assert events[0]["logger"] == "maintenance_orchestrator.campaign.step_runner"
    assert events[0]["operation"] == "sfc-verifyonly"
    assert events[0]["code"] == 1
    assert events[0]["rule_index"] == 0


def test_correlation_scope_tags_records_and_resets(tmp_path: Path) -> None:
    handle = setup_logging(run_id="cmp-run-3", log_dir=tmp_path)

    with correlation_scope(campaign_id="cmp-run-3", target="C:"):
        assert current_correlation() == {"campaign_id": "cmp-run-3", "target": "C:"}
        handle.logger.info("inside")
        with correlation_scope(target=None):
            handle.logger.info("untargeted")
    handle.logger.info("outside")
    shutdown_logging(handle)

    assert current_correlation() == {}
    inside, untargeted, outside = _read_events(handle.log_path)
    assert inside["target"] == "C:"
    assert inside["campaign_id"] == "cmp-run-3"
    assert "target" not in untargeted
    assert untargeted["campaign_id"] == "cmp-run-3"
    assert "campaign_id" not in outside


def test_extra_values_are_normalized_to_json(tmp_path: Path) -> None:
    handle = setup_logging(run_id="cmp-run-4", log_dir=tmp_path)

    handle.logger.info(
        "normalized",
        extra={
            "started": datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
            "path": Path("raw") / "00-chkdsk.log",
            "codes": frozenset({2, 1}),
            "ratio": float("nan"),
            "raw": b"Y\n",
        },
    )
    shutdown_logging(handle)

    event = _read_events(handle.log_path)[0]
    assert event["started"] == "2026-01-02T03:04:05.000000Z"
    assert event["path"] == str(Path("raw") / "00-chkdsk.log")
    assert event["codes"] == [1, 2]
    assert event["ratio"] == "nan"
    assert event["raw"] == "Y\n"


def test_multithreaded_logging_keeps_every_line_intact(tmp_path: Path) -> None:
    handle = start_run_logging(
        LoggingConfig(run_id="cmp-run-5", base_log_dir=tmp_path, queue_size=10_000)
    )

    def _worker(worker_id: int) -> None:
        for index in range(50):
            handle.logger.info("tick", extra={"worker": worker_id, "index": index})

    threads = [threading.Thread(target=_worker, args=(worker_id,)) for worker_id in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    shutdown_logging(handle)

    events = _read_events(handle.log_path)
    assert len(events) == 200
    assert handle.dropped_records == 0


def test_setup_replaces_previous_handle_and_shutdown_is_idempotent(tmp_path: Path) -> None:
    first = setup_logging(run_id="first", log_dir=tmp_path)
    second = setup_logging(run_id="second", log_dir=tmp_path)

    assert first.is_shutdown
    assert get_active_logging_handle() is second
    shutdown_logging(second)
    shutdown_logging(second)
    assert second.is_shutdown
    assert get_active_logging_handle() is None


@pytest.mark.parametrize(
    ("config", "message"),
    [
        (LoggingConfig(run_id="  "), "run_id must not be empty"),
        (LoggingConfig(run_id="x", log_filename="../escape.jsonl"), "path separators"),
        (LoggingConfig(run_id="x", queue_size=0), "queue_size"),
        (LoggingConfig(run_id="x", level="LOUD"), "unsupported logging level"),
    ],
)
def test_invalid_logging_config_is_rejected(
    tmp_path: Path, config: LoggingConfig, message: str
) -> None:
    config = LoggingConfig(
        run_id=config.run_id,
        base_log_dir=tmp_path,
        log_filename=config.log_filename,
        queue_size=config.queue_size,
        level=config.level,
    )

    with pytest.raises(ValueError, match=message):
        start_run_logging(config)


def test_logger_does_not_propagate_to_root(tmp_path: Path) -> None:
    handle = setup_logging(run_id="cmp-run-6", log_dir=tmp_path)

    assert handle.logger.propagate is False
    assert logging.getLogger("maintenance_orchestrator") is handle.logger


def test_structlog_exceptions_are_rendered_into_the_event(tmp_path: Path) -> None:
    handle = setup_logging(run_id="cmp-run-7", log_dir=tmp_path)
    logger = structlog.get_logger("maintenance_orchestrator.execution.executor")

    try:
        raise OSError("handle lost")
    except OSError:
        logger.exception("capture_failed", operation="chkdsk-scan")
    shutdown_logging(handle)

    (event,) = _read_events(handle.log_path)
    assert event["event"] == "capture_failed"
    assert event["level"] == "ERROR"
    assert "OSError: handle lost" in str(event["exception"])


def test_flush_makes_queued_events_visible_before_shutdown(tmp_path: Path) -> None:
    handle = setup_logging(run_id="cmp-run-8", log_dir=tmp_path)

    handle.logger.info("queued")
    flush_logging()

    assert [event["event"] for event in _read_events(handle.log_path)] == ["queued"]
    assert not handle.is_shutdown
