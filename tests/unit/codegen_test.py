"""Tests for the codegen orchestrator and the subprocess command runner."""

from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

from convex_hooks.core.codegen import (
    CodegenJob,
    CodegenOrchestrator,
    CommandResult,
    JobState,
    SubprocessCommandRunner,
)
from convex_hooks.models import EventKind, FileChangeEvent, Finding, Severity


def _event(path: str = "convex/schema.ts") -> FileChangeEvent:
    return FileChangeEvent(path=path, kind=EventKind.SAVED, timestamp=datetime.now(timezone.utc))


class _FakeRunner:
    def __init__(self, result: CommandResult | None = None) -> None:
        self.result = result or CommandResult(returncode=0)
        self.calls = 0

    async def run(self) -> CommandResult:
        self.calls += 1
        return self.result


class _GatedRunner:
    """Blocks every run until released and records the peak concurrency."""

    def __init__(self, result: CommandResult | None = None) -> None:
        self.result = result or CommandResult(returncode=0)
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def run(self) -> CommandResult:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            await self.release.wait()
        finally:
            self.active -= 1
        return self.result


# Writes its pid to argv[1], then sleeps.
_SLEEPER = "import os, pathlib, sys, time; pathlib.Path(sys.argv[1]).write_text(str(os.getpid())); time.sleep(30)"


async def _read_pid(pid_file: Path) -> int:
    for _ in range(200):
        if pid_file.exists() and pid_file.read_text().strip():
            return int(pid_file.read_text())
        await asyncio.sleep(0.05)
    raise AssertionError(f"child never wrote {pid_file}")


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


class TestDebounce:
    @pytest.mark.asyncio
    async def test_rapid_saves_run_once(self) -> None:
        runner = _FakeRunner()
        orchestrator = CodegenOrchestrator(runner, debounce_seconds=0.1)

        first = orchestrator.submit(_event())
        for _ in range(4):
            await asyncio.sleep(0.02)
            assert orchestrator.submit(_event()) is first
        assert runner.calls == 0

        await orchestrator.wait_idle()

        assert runner.calls == 1
        assert first.state is JobState.SUCCEEDED
        assert len(first.events) == 5

    @pytest.mark.asyncio
    async def test_spaced_saves_run_each_time(self) -> None:
        runner = _FakeRunner()
        orchestrator = CodegenOrchestrator(runner, debounce_seconds=0.05)

        for _ in range(3):
            orchestrator.submit(_event())
            await asyncio.sleep(0.15)
        await orchestrator.wait_idle()

        assert runner.calls == 3
        assert [job.state for job in orchestrator.history] == [JobState.SUCCEEDED] * 3

    @pytest.mark.asyncio
    async def test_deadline_is_extended_not_restarted_early(self) -> None:
        runner = _FakeRunner()
        orchestrator = CodegenOrchestrator(runner, debounce_seconds=0.1)

        orchestrator.submit(_event())
        await asyncio.sleep(0.07)
        orchestrator.submit(_event())
        await asyncio.sleep(0.07)

        assert runner.calls == 0
        await orchestrator.wait_idle()
        assert runner.calls == 1


class TestSerialization:
    @pytest.mark.asyncio
    async def test_save_during_run_queues_new_job(self) -> None:
        runner = _GatedRunner()
        orchestrator = CodegenOrchestrator(runner, debounce_seconds=0)

        first = orchestrator.submit(_event())
        await runner.started.wait()
        assert orchestrator.running is first
        assert first.state is JobState.RUNNING

        second = orchestrator.submit(_event())
        assert second is not first
        assert orchestrator.pending is second
        assert second.state is JobState.PENDING

        runner.release.set()
        await orchestrator.wait_idle()

        assert runner.calls == 2
        assert runner.max_active == 1
        assert list(orchestrator.history) == [first, second]
        assert orchestrator.running is None
        assert orchestrator.pending is None


class TestFailures:
    @pytest.mark.asyncio
    async def test_non_zero_exit_reports_output_verbatim(self) -> None:
        output = "✖ Error: convex/schema.ts:12 Unexpected token\n"
        runner = _FakeRunner(CommandResult(returncode=1, stderr=output))
        diagnostics: list[Finding] = []
        orchestrator = CodegenOrchestrator(runner, debounce_seconds=0, on_diagnostic=diagnostics.append)

        job = orchestrator.submit(_event())
        await orchestrator.wait_idle()

        assert job.state is JobState.FAILED
        assert job.failure is not None
        assert job.failure.returncode == 1
        assert len(diagnostics) == 1
        assert diagnostics[0].check_id == "codegen"
        assert diagnostics[0].severity is Severity.ERROR
        assert diagnostics[0].file_path == "convex/schema.ts"
        assert diagnostics[0].message == output

    @pytest.mark.asyncio
    async def test_failure_is_not_retried_until_next_save(self) -> None:
        runner = _FakeRunner(CommandResult(returncode=2, stdout="bad"))
        orchestrator = CodegenOrchestrator(runner, debounce_seconds=0)

        orchestrator.submit(_event())
        await orchestrator.wait_idle()
        await asyncio.sleep(0.05)
        assert runner.calls == 1

        runner.result = CommandResult(returncode=0)
        job = orchestrator.submit(_event())
        await orchestrator.wait_idle()
        assert runner.calls == 2
        assert job.state is JobState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_runner_exception_fails_the_job(self) -> None:
        class _Raising:
            async def run(self) -> CommandResult:
                raise OSError("npx missing")

        diagnostics: list[Finding] = []
        orchestrator = CodegenOrchestrator(_Raising(), debounce_seconds=0, on_diagnostic=diagnostics.append)

        job = orchestrator.submit(_event())
        await orchestrator.wait_idle()

        assert job.state is JobState.FAILED
        assert "npx missing" in diagnostics[0].message

    @pytest.mark.asyncio
    async def test_raising_diagnostic_callback_keeps_worker_alive(self, caplog: pytest.LogCaptureFixture) -> None:
        runner = _GatedRunner(CommandResult(returncode=1, stderr="schema error"))

        def _explode(finding: Finding) -> None:
            raise ValueError("sink closed")

        orchestrator = CodegenOrchestrator(runner, debounce_seconds=0, on_diagnostic=_explode)

        with caplog.at_level("ERROR", logger="convex_hooks"):
            first = orchestrator.submit(_event())
            await runner.started.wait()
            second = orchestrator.submit(_event())
            runner.release.set()
            await orchestrator.wait_idle()

        assert runner.calls == 2
        assert first.state is JobState.FAILED
        assert second.state is JobState.FAILED
        assert orchestrator.pending is None
        assert "Error in codegen diagnostic callback" in caplog.text

    @pytest.mark.asyncio
    async def test_stop_kills_running_codegen_process(self, tmp_path: Path) -> None:
        pid_file = tmp_path / "pid"
        runner = SubprocessCommandRunner([sys.executable, "-c", _SLEEPER, str(pid_file)], timeout=30)
        orchestrator = CodegenOrchestrator(runner, debounce_seconds=0)

        job = orchestrator.submit(_event())
        pid = await _read_pid(pid_file)
        assert job.state is JobState.RUNNING

        await orchestrator.stop()

        assert not _alive(pid)
        assert orchestrator.running is None


class TestJobTransitions:
    def test_transition_requires_expected_state(self) -> None:
        job = CodegenJob(triggered_by=_event(), debounce_deadline=0.0)
        job.transition(JobState.PENDING, JobState.RUNNING)

        with pytest.raises(RuntimeError, match="expected pending"):
            job.transition(JobState.PENDING, JobState.RUNNING)

    def test_running_job_cannot_absorb(self) -> None:
        job = CodegenJob(triggered_by=_event(), debounce_deadline=0.0)
        job.transition(JobState.PENDING, JobState.RUNNING)

        with pytest.raises(RuntimeError):
            job.absorb(_event(), 1.0)

    def test_absorb_never_shortens_deadline(self) -> None:
        job = CodegenJob(triggered_by=_event(), debounce_deadline=5.0)
        job.absorb(_event(), 3.0)
        assert job.debounce_deadline == 5.0
        assert len(job.events) == 2


class TestSubprocessCommandRunner:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        runner = SubprocessCommandRunner([sys.executable, "-c", "print('generated')"], timeout=30)
        result = await runner.run()
        assert result.ok is True
        assert result.stdout.strip() == "generated"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self) -> None:
        script = "import sys; sys.stderr.write('schema error'); sys.exit(3)"
        result = await SubprocessCommandRunner([sys.executable, "-c", script], timeout=30).run()
        assert result.ok is False
        assert result.returncode == 3
        assert result.output == "schema error"

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self) -> None:
        runner = SubprocessCommandRunner([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.3)
        result = await runner.run()
        assert result.timed_out is True
        assert result.ok is False
        assert "timed out after 0.3s" in result.output

    @pytest.mark.asyncio
    async def test_cancellation_kills_process(self, tmp_path: Path) -> None:
        pid_file = tmp_path / "pid"
        runner = SubprocessCommandRunner([sys.executable, "-c", _SLEEPER, str(pid_file)], timeout=30)

        task = asyncio.create_task(runner.run())
        pid = await _read_pid(pid_file)
        assert _alive(pid)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not _alive(pid)

    @pytest.mark.asyncio
    async def test_missing_executable(self) -> None:
        result = await SubprocessCommandRunner(["convex-hooks-no-such-binary"], timeout=5).run()
        assert result.returncode is None
        assert "Could not start" in result.output
