from __future__ import annotations

import json
from pathlib import Path

import pytest
from loguru import logger

from machinist.core.exceptions import ConfigurationError
from machinist.logging import LogConfig, setup_logging, teardown_logging


@pytest.mark.asyncio
async def test_file_sink_prefixes_cluster(tmp_path: Path, locker, make_cluster) -> None:
    log_file = tmp_path / "machinist.log"
    handler_ids = setup_logging(LogConfig(level="DEBUG", file=str(log_file), console=False))
    try:
        await locker.acquire(make_cluster(name="prod"))
    finally:
        teardown_logging(handler_ids)

    lines = [line for line in log_file.read_text().splitlines() if "control plane lock" in line]
    assert lines
    assert "[default/prod] Attempting to create control plane lock" in lines[0]


@pytest.mark.asyncio
async def test_serialized_file_sink(tmp_path: Path, locker, make_cluster) -> None:
    log_file = tmp_path / "machinist.jsonl"
    handler_ids = setup_logging(LogConfig(file=str(log_file), console=False, serialize=True))
    try:
        await locker.acquire(make_cluster(name="prod"))
    finally:
        teardown_logging(handler_ids)

    records = [json.loads(line)["record"] for line in log_file.read_text().splitlines()]
    lock_records = [r for r in records if r["extra"].get("entry") == "prod-controlplane"]
    assert lock_records
    assert lock_records[0]["extra"]["cluster"] == "prod"


@pytest.mark.asyncio
async def test_library_is_silent_by_default(locker, make_cluster) -> None:
    records: list[str] = []
    sink_id = logger.add(records.append, filter="machinist", format="{message}")
    try:
        await locker.acquire(make_cluster())
    finally:
        logger.remove(sink_id)

    assert records == []


def test_unknown_level() -> None:
    with pytest.raises(ConfigurationError):
        LogConfig(level="VERBOSE")  # type: ignore[arg-type]
