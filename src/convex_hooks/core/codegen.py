"""Debounced, serialized execution of the Convex codegen command."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from convex_hooks.errors import CodegenFailure
from convex_hooks.models import FileChangeEvent, Finding, Severity

logger = logging.getLogger(__name__)

CODEGEN_CHECK_ID = "codegen"


@dataclass(frozen=True)
class CommandResult:
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return self.stderr if self.stderr.strip() else self.stdout


class CommandRunner(Protocol):
    async def run(self) -> CommandResult: ...


class SubprocessCommandRunner:
    """Runs a command without interactive input, killing it when the timeout elapses."""

    def __init__(
        self,
        argv: Sequence[str],
        cwd: str | Path | None = None,
        timeout: float = 120.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._argv = list(argv)
        self._cwd = Path(cwd) if cwd is not None else None
        self._timeout = timeout
        self._env = dict(env) if env is not None else None

    async def run(self) -> CommandResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                cwd=self._cwd,
                env=self._env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return CommandResult(returncode=None, stderr=f"Could not start {' '.join(self._argv)}: {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            return CommandResult(
                returncode=None,
                stderr=f"{' '.join(self._argv)} timed out after {self._timeout:g}s",
                timed_out=True,
            )
        finally:
            # also reached on cancellation; the child must not outlive the caller
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        return CommandResult(
            returncode=proc.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class CodegenJob:
    triggered_by: FileChangeEvent
    debounce_deadline: float
    state: JobState = JobState.PENDING
    events: list[FileChangeEvent] = field(default_factory=list)
    failure: CodegenFailure | None = None

    def __post_init__(self) -> None:
        if not self.events:
            self.events.append(self.triggered_by)

    def transition(self, expected: JobState, new: JobState) -> None:
        if self.state is not expected:
            raise RuntimeError(f"Codegen job is {self.state.value}, expected {expected.value}")
        self.state = new

    def absorb(self, event: FileChangeEvent, deadline: float) -> None:
        if self.state is not JobState.PENDING:
            raise RuntimeError(f"Cannot extend a {self.state.value} codegen job")
        self.events.append(event)
        self.debounce_deadline = max(self.debounce_deadline, deadline)


class CodegenOrchestrator:
    """Coalesces schema saves into codegen runs, one run at a time.

    Saves arriving while a job is pending extend its deadline. Saves arriving
    while a job is running start a new pending job that runs after it.
    """

    def __init__(
        self,
        runner: CommandRunner,
        debounce_seconds: float = 0.5,
        on_diagnostic: Callable[[Finding], None] | None = None,
        history_size: int = 50,
    ) -> None:
        self._runner = runner
        self._debounce = debounce_seconds
        self._on_diagnostic = on_diagnostic
        self._pending: CodegenJob | None = None
        self._running: CodegenJob | None = None
        self._worker: asyncio.Task[None] | None = None
        self.history: deque[CodegenJob] = deque(maxlen=history_size)
        self.invocations = 0

    @property
    def pending(self) -> CodegenJob | None:
        return self._pending

    @property
    def running(self) -> CodegenJob | None:
        return self._running

    def submit(self, event: FileChangeEvent) -> CodegenJob:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._debounce
        job = self._pending
        if job is None:
            job = CodegenJob(triggered_by=event, debounce_deadline=deadline)
            self._pending = job
            logger.debug("Codegen scheduled for %s", event.path)
        else:
            job.absorb(event, deadline)
            logger.debug("Codegen deadline extended by %s (%d saves)", event.path, len(job.events))

        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
        return job

    async def wait_idle(self) -> None:
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._pending is not None:
            job = self._pending
            delay = job.debounce_deadline - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
                continue
            self._pending = None
            job.transition(JobState.PENDING, JobState.RUNNING)
            self._running = job
            try:
                await self._execute(job)
            finally:
                self._running = None
                self.history.append(job)

    async def _execute(self, job: CodegenJob) -> None:
        self.invocations += 1
        logger.info("Running codegen for %d schema save(s)", len(job.events))
        try:
            result = await self._runner.run()
        except Exception as exc:
            logger.exception("Codegen runner raised")
            result = CommandResult(returncode=None, stderr=f"{type(exc).__name__}: {exc}")

        if result.ok:
            job.transition(JobState.RUNNING, JobState.SUCCEEDED)
            logger.info("Codegen succeeded")
            return

        job.failure = CodegenFailure(result.output, returncode=result.returncode, timed_out=result.timed_out)
        job.transition(JobState.RUNNING, JobState.FAILED)
        logger.warning("Codegen failed (exit %s)", result.returncode)
        if self._on_diagnostic is not None:
            try:
                self._on_diagnostic(codegen_finding(job))
            except Exception:
                logger.exception("Error in codegen diagnostic callback")


def codegen_finding(job: CodegenJob) -> Finding:
    failure = job.failure
    output = failure.output if failure is not None else ""
    if not output.strip():
        returncode = failure.returncode if failure is not None else None
        output = f"codegen exited with status {returncode}"
    return Finding(
        check_id=CODEGEN_CHECK_ID,
        file_path=job.events[-1].path,
        line=None,
        severity=Severity.ERROR,
        message=output,
    )
