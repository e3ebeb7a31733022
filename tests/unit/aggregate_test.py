"""Tests for the finding aggregator."""

from convex_hooks.core.aggregate import aggregate
from convex_hooks.models import EventKind, Finding, Severity, Verdict


def _finding(
    check_id: str = "function-args-validator",
    line: int | None = 4,
    severity: Severity = Severity.ERROR,
    message: str = "missing args",
    path: str = "convex/send.ts",
) -> Finding:
    return Finding(check_id=check_id, file_path=path, line=line, severity=severity, message=message)


def test_identical_keys_collapse_keeping_first_message() -> None:
    report = aggregate(
        [_finding(message="first"), _finding(message="second"), _finding(line=5)],
        EventKind.SAVED,
    )

    assert len(report.findings) == 2
    assert report.findings[0].message == "first"
    assert report.findings[1].line == 5


def test_different_paths_are_kept() -> None:
    report = aggregate([_finding(), _finding(path="convex/other.ts")], EventKind.SAVED)
    assert len(report.findings) == 2


def test_commit_with_error_fails() -> None:
    report = aggregate([_finding(severity=Severity.WARNING, check_id="w"), _finding()], EventKind.COMMITTED)

    assert report.verdict is Verdict.FAIL
    assert report.gating is True
    assert report.exit_code == 1


def test_commit_with_only_warnings_passes() -> None:
    report = aggregate([_finding(severity=Severity.WARNING)], EventKind.COMMITTED)
    assert report.verdict is Verdict.PASS
    assert report.exit_code == 0


def test_saved_context_never_blocks() -> None:
    report = aggregate([_finding(), _finding(check_id="x")], EventKind.SAVED)

    assert report.verdict is Verdict.PASS
    assert report.gating is False
    assert report.count(Severity.ERROR) == 2


def test_empty_commit_passes() -> None:
    assert aggregate([], EventKind.COMMITTED).verdict is Verdict.PASS


def test_format_lines() -> None:
    report = aggregate(
        [_finding(), _finding(check_id="codegen", line=None, message="boom", path="convex/schema.ts")],
        EventKind.COMMITTED,
    )
    assert report.format_lines() == [
        "error: convex/send.ts:4: missing args",
        "error: convex/schema.ts: boom",
    ]
