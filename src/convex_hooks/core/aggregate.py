from collections.abc import Iterable

from convex_hooks.models import EventKind, Finding, Report, Severity, Verdict


def aggregate(findings: Iterable[Finding], context: EventKind) -> Report:
    """Collapse duplicate findings and compute the verdict.

    Findings sharing ``(check_id, file_path, line)`` keep the first message.
    Only the committed (gating) context can fail.
    """
    unique: dict[tuple[str, str, int | None], Finding] = {}
    for finding in findings:
        unique.setdefault(finding.key, finding)

    kept = tuple(unique.values())
    gating = context is EventKind.COMMITTED
    failed = gating and any(f.severity is Severity.ERROR for f in kept)
    return Report(findings=kept, verdict=Verdict.FAIL if failed else Verdict.PASS, gating=gating)
