"""Runs the external keypair grinder for one request at a time per scratch directory."""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import shutil
import signal
import uuid
from dataclasses import dataclass
from pathlib import Path

from solsmith.config import GeneratorConfig
from solsmith.core.types import PatternKind
from solsmith.errors import GenerationError, GenerationFailure
from solsmith.log import get_logger
from solsmith.services.base import Service
from solsmith.storage.models import KeyRecord

logger = get_logger(__name__)

_REQUEST_ID = re.compile(r"^[0-9a-f]{32}$")


def new_request_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class GeneratedKey:
    public_identifier: str
    secret_material: str
    pattern_kind: PatternKind
    pattern_value: str

    def to_record(self) -> KeyRecord:
        return KeyRecord(
            public_identifier=self.public_identifier,
            secret_material=self.secret_material,
            pattern_kind=self.pattern_kind,
            pattern_value=self.pattern_value,
        )


class GenerationRunner(Service):
    """Invokes ``<tool> grind --starts-with|--ends-with <pattern>:1`` as a subprocess.

    Every request runs inside its own scratch directory named after its request id, so
    concurrent requests for the same pattern never see each other's artifacts. The
    artifact is deleted as soon as it has been read and the scratch directory is removed
    on every exit path, including cancellation.
    """

    def __init__(self, config: GeneratorConfig):
        self._config = config
        self._scratch_root = Path(config.scratch_dir)
        self._semaphore = asyncio.Semaphore(config.max_concurrent)
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    @property
    def service_name(self) -> str:
        return "generator"

    @property
    def unavailable_hint(self) -> str:
        return f"Install the Solana CLI so that '{self._config.tool_path}' can be executed"

    @property
    def running(self) -> int:
        return len(self._processes)

    async def start(self) -> None:
        self._scratch_root.mkdir(parents=True, exist_ok=True)
        removed = await asyncio.to_thread(self._purge_scratch)
        if removed:
            logger.warning("stale_scratch_removed", count=removed)
        logger.info(
            "generator_started",
            tool=self._config.tool_path,
            scratch_dir=str(self._scratch_root),
            max_concurrent=self._config.max_concurrent,
        )

    async def stop(self) -> None:
        processes = list(self._processes.values())
        for process in processes:
            await _terminate(process)
        self._processes.clear()
        await asyncio.to_thread(self._purge_scratch)
        logger.info("generator_stopped", killed=len(processes))

    async def health_check(self) -> bool:
        return shutil.which(self._config.tool_path) is not None

    def command(self, kind: PatternKind, value: str) -> list[str]:
        return [self._config.tool_path, "grind", kind.grind_flag, f"{value}:1"]

    async def generate(
        self, kind: PatternKind, value: str, request_id: str | None = None
    ) -> GeneratedKey:
        """Grind one keypair matching ``value`` and return it.

        Raises :class:`GenerationError` on tool failure, timeout or a missing artifact.
        Cancelling the awaiting task kills the tool and discards anything it produced.
        """
        request_id = request_id or new_request_id()
        if not _REQUEST_ID.match(request_id):
            raise ValueError(f"invalid request id: {request_id!r}")

        async with self._semaphore:
            scratch = self._scratch_root / request_id
            scratch.mkdir(parents=True)
            try:
                await self._run(request_id, scratch, kind, value)
                key = self._collect(scratch, kind, value)
            finally:
                shutil.rmtree(scratch, ignore_errors=True)

        logger.info(
            "generation_succeeded",
            request_id=request_id,
            public_identifier=key.public_identifier,
        )
        return key

    async def _run(self, request_id: str, scratch: Path, kind: PatternKind, value: str) -> None:
        cmd = self.command(kind, value)
        logger.info("generation_started", request_id=request_id, kind=kind, pattern=value)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=scratch,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            logger.error("generator_spawn_failed", tool=self._config.tool_path, error=str(e))
            raise GenerationError(GenerationFailure.EXTERNAL_FAILURE, str(e)) from e

        self._processes[request_id] = process
        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._config.timeout
            )
        except asyncio.TimeoutError:
            await _terminate(process)
            logger.error("generation_timeout", request_id=request_id, timeout=self._config.timeout)
            raise GenerationError(
                GenerationFailure.TIMEOUT, f"no result after {self._config.timeout} seconds"
            )
        except asyncio.CancelledError:
            await _terminate(process)
            logger.info("generation_cancelled", request_id=request_id)
            raise
        finally:
            self._processes.pop(request_id, None)

        if process.returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace").strip()
            logger.error(
                "generation_failed",
                request_id=request_id,
                returncode=process.returncode,
                stderr=stderr_text[:500],
            )
            raise GenerationError(
                GenerationFailure.EXTERNAL_FAILURE, f"exit {process.returncode}"
            )

    def _collect(self, scratch: Path, kind: PatternKind, value: str) -> GeneratedKey:
        matches = sorted(p for p in scratch.glob("*.json") if kind.matches(p.stem, value))
        if not matches:
            logger.error("generation_no_artifact", scratch=str(scratch))
            raise GenerationError(GenerationFailure.NO_ARTIFACT, "tool reported success without output")

        artifact = matches[0]
        try:
            secret = artifact.read_text(encoding="utf-8")
        finally:
            for path in matches:
                path.unlink(missing_ok=True)

        return GeneratedKey(
            public_identifier=artifact.stem,
            secret_material=secret,
            pattern_kind=kind,
            pattern_value=value,
        )

    def _purge_scratch(self) -> int:
        if not self._scratch_root.is_dir():
            return 0
        removed = 0
        for child in self._scratch_root.iterdir():
            if child.is_dir() and _REQUEST_ID.match(child.name):
                shutil.rmtree(child, ignore_errors=True)
                removed += 1
        return removed


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill the tool together with anything it spawned, then reap it."""
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
    await process.wait()
