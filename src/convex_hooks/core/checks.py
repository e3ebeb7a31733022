"""Check definitions, the rule registry and the baseline Convex checks."""

import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace

from convex_hooks.core.source import CallSite, IndexDef, SourceFile
from convex_hooks.errors import ConfigError
from convex_hooks.guidance import guidance_for
from convex_hooks.models import DeploymentSnapshot, Finding, Severity, TriggerCategory

Hit = tuple[int | None, str]


@dataclass(frozen=True)
class CheckContext:
    """Project facts a check may consult; ``None`` means the fact is unavailable."""

    indexes: Mapping[str, tuple[IndexDef, ...]] | None = None
    deployment: DeploymentSnapshot | None = None


Evaluator = Callable[[SourceFile, CheckContext], Iterable[Hit]]


@dataclass(frozen=True)
class CheckDefinition:
    id: str
    categories: frozenset[TriggerCategory]
    severity: Severity
    evaluator: Evaluator = field(compare=False)
    description: str = ""

    def applies_to(self, categories: frozenset[TriggerCategory]) -> bool:
        return not self.categories.isdisjoint(categories)

    def describe(self) -> dict[str, str]:
        return {
            "id": self.id,
            "categories": ", ".join(sorted(c.value for c in self.categories)),
            "severity": self.severity.value,
            "description": self.description,
        }

    def evaluate(self, source: SourceFile, context: CheckContext | None = None) -> list[Finding]:
        hint = guidance_for(self.id)
        return [
            Finding(
                check_id=self.id,
                file_path=source.path,
                line=line,
                severity=self.severity,
                message=f"{message} {hint}".rstrip(),
            )
            for line, message in self.evaluator(source, context or CheckContext())
        ]


class RuleRegistry:
    """Ordered, read-only collection of checks with unique ids."""

    def __init__(self, checks: Iterable[CheckDefinition]) -> None:
        ordered = tuple(checks)
        seen: set[str] = set()
        for check in ordered:
            if check.id in seen:
                raise ValueError(f"Duplicate check id '{check.id}'")
            seen.add(check.id)
        self._checks = ordered

    def __iter__(self) -> Iterator[CheckDefinition]:
        return iter(self._checks)

    def __len__(self) -> int:
        return len(self._checks)

    def __contains__(self, check_id: object) -> bool:
        return any(check.id == check_id for check in self._checks)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(check.id for check in self._checks)

    def get(self, check_id: str) -> CheckDefinition | None:
        for check in self._checks:
            if check.id == check_id:
                return check
        return None

    def resolve(self, overrides: Mapping[str, str]) -> "RuleRegistry":
        """Return a new registry with severity overrides applied; ``off`` drops the check."""
        unknown = sorted(set(overrides) - set(self.ids))
        if unknown:
            raise ConfigError(f"Severity overrides name unknown check id(s): {', '.join(unknown)}")

        resolved: list[CheckDefinition] = []
        for check in self._checks:
            override = overrides.get(check.id)
            if override is None:
                resolved.append(check)
            elif override == "off":
                continue
            else:
                resolved.append(replace(check, severity=Severity(override)))
        return RuleRegistry(resolved)


# ---------------------------------------------------------------------------
# Baseline checks
# ---------------------------------------------------------------------------

_FUNCTION_CHECKS = frozenset({TriggerCategory.FUNCTION_SAVE, TriggerCategory.PRE_COMMIT})

_FILTER_ON_QUERY = re.compile(r"ctx\.db\.query\((['\"`])(\w+)\1\)\.filter")
_FILTER_EQ_FIELD = re.compile(r"q\.eq\(\s*q\.field\(\s*['\"`]([\w.]+)['\"`]\s*\)")
_SCHEDULER_CALLS = frozenset({"ctx.scheduler.runAfter", "ctx.scheduler.runAt"})
_CRON_CALL = re.compile(r"\bcrons\.(?:interval|hourly|daily|weekly|monthly|cron)\s*\((.*?)\)\s*;", re.DOTALL)
_PUBLIC_REF = re.compile(r"(?<![\w.])api\.[\w.]+")
_ASYNC_CTX_CALL = re.compile(
    r"ctx\.(?:"
    r"db\.(?:get|insert|patch|replace|delete)"
    r"|db\.query\(.*\)\.(?:collect|first|unique|take|paginate)"
    r"|scheduler\.(?:runAfter|runAt|cancel)"
    r"|storage\.(?:get|getUrl|getMetadata|delete|store|generateUploadUrl)"
    r"|run(?:Query|Mutation|Action)"
    r"|vectorSearch"
    r")"
)
_ENV_REF = re.compile(r"\bprocess\.env\.([A-Za-z_]\w*)")
_SYSTEM_FIELDS = frozenset({"_id", "_creationTime"})


def _args_validator(source: SourceFile, _context: CheckContext) -> Iterator[Hit]:
    for fn in source.functions:
        if fn.exported and fn.kind != "httpAction" and not fn.has_args:
            yield fn.line, f"{fn.kind} '{fn.name}' does not declare an `args` validator."


def _returns_validator(source: SourceFile, _context: CheckContext) -> Iterator[Hit]:
    for fn in source.functions:
        if fn.exported and fn.kind != "httpAction" and not fn.has_returns:
            yield fn.line, f"{fn.kind} '{fn.name}' does not declare a `returns` validator."


def _filter_scan(source: SourceFile, context: CheckContext) -> Iterator[Hit]:
    if context.indexes is None:
        return
    for fn in source.functions:
        for call in fn.calls:
            match = _FILTER_ON_QUERY.fullmatch(call.callee)
            if match is None or not call.arguments:
                continue
            table = match.group(2)
            indexes = context.indexes.get(table, ())
            for field_name in _FILTER_EQ_FIELD.findall(call.arguments[0]):
                index = next((i for i in indexes if i.fields and i.fields[0] == field_name), None)
                if index is not None:
                    yield (
                        call.line,
                        f"`.filter()` on '{table}' compares '{field_name}' with a full table scan; "
                        f"index '{index.name}' covers it.",
                    )
                    break


def _reads_clock(call: CallSite) -> bool:
    if call.constructed:
        return call.callee == "Date" and not call.arguments
    return call.callee == "Date.now"


def _nondeterministic_time(source: SourceFile, _context: CheckContext) -> Iterator[Hit]:
    for fn in source.functions:
        if not fn.is_query:
            continue
        for call in fn.calls:
            if _reads_clock(call):
                yield call.line, f"{fn.kind} '{fn.name}' reads the current time."


def _scheduler_public_target(source: SourceFile, _context: CheckContext) -> Iterator[Hit]:
    for fn in source.functions:
        for call in fn.calls:
            if call.callee in _SCHEDULER_CALLS and len(call.arguments) >= 2 and _PUBLIC_REF.match(call.arguments[1]):
                yield call.line, f"'{fn.name}' schedules public function `{call.arguments[1]}`."
    for match in _CRON_CALL.finditer(source.text):
        target = _PUBLIC_REF.search(match.group(1))
        if target is not None:
            line = source.text.count("\n", 0, match.start()) + 1
            yield line, f"cron job targets public function `{target.group(0)}`."


def _floating_async_call(source: SourceFile, _context: CheckContext) -> Iterator[Hit]:
    for fn in source.functions:
        for call in fn.calls:
            if call.awaited or call.constructed or not _ASYNC_CTX_CALL.fullmatch(call.callee):
                continue
            if call.discarded or call.voided:
                yield call.line, f"'{fn.name}' calls `{call.callee}` without awaiting it."
            elif call.assigned_to is not None and call.assigned_to not in fn.settled_names:
                yield (
                    call.line,
                    f"'{fn.name}' stores `{call.callee}` in '{call.assigned_to}' and never awaits or returns it.",
                )


def _schema_index_naming(source: SourceFile, _context: CheckContext) -> Iterator[Hit]:
    for table in source.tables:
        for index in table.indexes:
            system = [f for f in index.fields if f in _SYSTEM_FIELDS]
            if system:
                yield index.line, f"index '{index.name}' on '{table.name}' lists system field(s) {', '.join(system)}."
                continue
            expected = "by_" + "_and_".join(f.replace(".", "_") for f in index.fields)
            if index.fields and index.name != expected:
                yield index.line, f"index '{index.name}' on '{table.name}' should be named '{expected}'."


def _deployment_env_var(source: SourceFile, context: CheckContext) -> Iterator[Hit]:
    snapshot = context.deployment
    if snapshot is None:
        return
    for number, text in source.lines():
        for name in _ENV_REF.findall(text):
            if name not in snapshot.env_var_names:
                yield number, f"`process.env.{name}` is not set on deployment '{snapshot.deployment}'."


BASELINE_CHECKS: tuple[CheckDefinition, ...] = (
    CheckDefinition(
        "function-args-validator",
        _FUNCTION_CHECKS,
        Severity.ERROR,
        _args_validator,
        "Exported functions validate their arguments.",
    ),
    CheckDefinition(
        "function-returns-validator",
        _FUNCTION_CHECKS,
        Severity.WARNING,
        _returns_validator,
        "Exported functions validate their return value.",
    ),
    CheckDefinition(
        "query-filter-scan",
        frozenset({TriggerCategory.FUNCTION_SAVE}),
        Severity.WARNING,
        _filter_scan,
        "Indexed fields are read with withIndex, not filter.",
    ),
    CheckDefinition(
        "query-nondeterministic-time",
        _FUNCTION_CHECKS,
        Severity.ERROR,
        _nondeterministic_time,
        "Queries never read the wall clock.",
    ),
    CheckDefinition(
        "scheduler-public-target",
        _FUNCTION_CHECKS,
        Severity.ERROR,
        _scheduler_public_target,
        "Scheduled functions and crons target internal functions only.",
    ),
    CheckDefinition(
        "floating-async-call",
        _FUNCTION_CHECKS,
        Severity.ERROR,
        _floating_async_call,
        "Promises returned by ctx are awaited.",
    ),
    CheckDefinition(
        "schema-index-naming",
        frozenset({TriggerCategory.SCHEMA_SAVE}),
        Severity.WARNING,
        _schema_index_naming,
        "Index names list their fields.",
    ),
    CheckDefinition(
        "deployment-env-var",
        frozenset({TriggerCategory.FUNCTION_SAVE}),
        Severity.WARNING,
        _deployment_env_var,
        "Referenced environment variables exist on the deployment.",
    ),
)


def default_registry() -> RuleRegistry:
    return RuleRegistry(BASELINE_CHECKS)
