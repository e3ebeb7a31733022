import logging
from collections.abc import Iterable

from convex_hooks.core.checks import CheckContext, RuleRegistry
from convex_hooks.core.source import SourceFile
from convex_hooks.errors import CheckExecutionError
from convex_hooks.models import Finding, Severity, TriggerCategory

logger = logging.getLogger(__name__)


class CheckRunner:
    """Runs the registry's checks that apply to a set of trigger categories."""

    def __init__(self, registry: RuleRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> RuleRegistry:
        return self._registry

    def run_checks(
        self,
        source: SourceFile,
        categories: Iterable[TriggerCategory],
        context: CheckContext | None = None,
    ) -> list[Finding]:
        """Return findings in registration order; a failing check yields one Error finding."""
        wanted = frozenset(categories)
        if not wanted:
            return []

        findings: list[Finding] = []
        for check in self._registry:
            if not check.applies_to(wanted):
                continue
            try:
                findings.extend(check.evaluate(source, context))
            except Exception as exc:
                error = CheckExecutionError(check.id, exc)
                logger.exception("Check %s failed on %s", check.id, source.path)
                findings.append(
                    Finding(
                        check_id=check.id,
                        file_path=source.path,
                        line=None,
                        severity=Severity.ERROR,
                        message=str(error),
                    )
                )
        return findings
