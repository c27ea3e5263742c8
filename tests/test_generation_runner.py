from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from solsmith.core.types import PatternKind
from solsmith.errors import GenerationError, GenerationFailure
from solsmith.generation.runner import new_request_id

from conftest import GRIND_FAIL, GRIND_OK, GRIND_SILENT, GRIND_SLOW


def _leftovers(tmp_path: Path) -> list[Path]:
    root = tmp_path / "keypairs"
    return list(root.iterdir()) if root.exists() else []


async def _wait_running(runner, count: int = 1) -> None:
    for _ in range(200):
        if runner.running >= count:
            return
        await asyncio.sleep(0.02)
    raise AssertionError("generator process never started")


async def test_prefix_generation_reads_and_removes_artifact(make_runner, tmp_path) -> None:
    runner = make_runner(GRIND_OK)

    key = await runner.generate(PatternKind.PREFIX, "ab")

    assert key.public_identifier == "ab123XYZ"
    assert key.secret_material == "SECRET1"
    assert key.pattern_kind is PatternKind.PREFIX
    assert key.pattern_value == "ab"
    assert _leftovers(tmp_path) == []


async def test_suffix_generation(make_runner) -> None:
    runner = make_runner(GRIND_OK)

    key = await runner.generate(PatternKind.SUFFIX, "yz")

    assert key.public_identifier == "XYZ123yz"
    assert key.to_record().pattern_kind is PatternKind.SUFFIX


async def test_command_line_requests_one_match(make_runner) -> None:
    runner = make_runner(GRIND_OK)

    cmd = runner.command(PatternKind.SUFFIX, "Sol")

    assert cmd[1:] == ["grind", "--ends-with", "Sol:1"]


async def test_concurrent_requests_for_same_pattern_do_not_collide(make_runner, tmp_path) -> None:
    runner = make_runner(GRIND_OK)

    keys = await asyncio.gather(*(runner.generate(PatternKind.PREFIX, "ab") for _ in range(3)))

    assert [k.secret_material for k in keys] == ["SECRET1"] * 3
    assert _leftovers(tmp_path) == []


async def test_non_zero_exit_is_external_failure(make_runner, tmp_path) -> None:
    runner = make_runner(GRIND_FAIL)

    with pytest.raises(GenerationError) as exc_info:
        await runner.generate(PatternKind.PREFIX, "ab")

    assert exc_info.value.failure is GenerationFailure.EXTERNAL_FAILURE
    assert _leftovers(tmp_path) == []


async def test_missing_tool_is_external_failure(tmp_path) -> None:
    from solsmith.config import GeneratorConfig
    from solsmith.generation.runner import GenerationRunner

    runner = GenerationRunner(
        GeneratorConfig(tool_path=str(tmp_path / "no-such-tool"), scratch_dir=str(tmp_path / "keypairs"))
    )

    with pytest.raises(GenerationError) as exc_info:
        await runner.generate(PatternKind.PREFIX, "ab")

    assert exc_info.value.failure is GenerationFailure.EXTERNAL_FAILURE
    assert await runner.health_check() is False


async def test_success_without_artifact_is_no_artifact(make_runner) -> None:
    runner = make_runner(GRIND_SILENT)

    with pytest.raises(GenerationError) as exc_info:
        await runner.generate(PatternKind.PREFIX, "ab")

    assert exc_info.value.failure is GenerationFailure.NO_ARTIFACT


async def test_timeout_kills_tool(make_runner, tmp_path) -> None:
    pid_file = tmp_path / "pid"
    runner = make_runner(GRIND_SLOW.format(pid_file=pid_file), timeout=1)

    with pytest.raises(GenerationError) as exc_info:
        await runner.generate(PatternKind.PREFIX, "ab")

    assert exc_info.value.failure is GenerationFailure.TIMEOUT
    assert runner.running == 0
    assert _leftovers(tmp_path) == []


async def test_cancellation_kills_tool_and_cleans_scratch(make_runner, tmp_path) -> None:
    pid_file = tmp_path / "pid"
    runner = make_runner(GRIND_SLOW.format(pid_file=pid_file))

    task = asyncio.create_task(runner.generate(PatternKind.PREFIX, "ab"))
    await _wait_running(runner)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert runner.running == 0
    assert _leftovers(tmp_path) == []
    if pid_file.exists() and pid_file.read_text().strip():
        with pytest.raises(ProcessLookupError):
            os.kill(int(pid_file.read_text().strip()), 0)


async def test_stop_kills_running_tools(make_runner, tmp_path) -> None:
    runner = make_runner(GRIND_SLOW.format(pid_file=tmp_path / "pid"))
    await runner.start()

    task = asyncio.create_task(runner.generate(PatternKind.PREFIX, "ab"))
    await _wait_running(runner)
    await runner.stop()

    with pytest.raises(GenerationError) as exc_info:
        await task
    assert exc_info.value.failure is GenerationFailure.EXTERNAL_FAILURE
    assert _leftovers(tmp_path) == []


async def test_start_purges_stale_scratch_directories(make_runner, tmp_path) -> None:
    root = tmp_path / "keypairs"
    stale = root / new_request_id()
    stale.mkdir(parents=True)
    (stale / "abOLD.json").write_text("old secret", encoding="utf-8")
    unrelated = root / "notes"
    unrelated.mkdir()

    runner = make_runner(GRIND_OK)
    await runner.start()

    assert not stale.exists()
    assert unrelated.exists()


async def test_rejects_malformed_request_id(make_runner) -> None:
    runner = make_runner(GRIND_OK)

    with pytest.raises(ValueError):
        await runner.generate(PatternKind.PREFIX, "ab", request_id="../escape")
