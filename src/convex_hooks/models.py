from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    SAVED = "saved"
    COMMITTED = "committed"


class TriggerCategory(str, Enum):
    FUNCTION_SAVE = "function_save"
    SCHEMA_SAVE = "schema_save"
    PRE_COMMIT = "pre_commit"


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class FileChangeEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    kind: EventKind
    timestamp: datetime


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    check_id: str
    file_path: str
    line: int | None = None
    severity: Severity
    message: str

    @property
    def key(self) -> tuple[str, str, int | None]:
        return (self.check_id, self.file_path, self.line)

    def format_line(self) -> str:
        location = self.file_path if self.line is None else f"{self.file_path}:{self.line}"
        return f"{self.severity.value}: {location}: {self.message}"


class Report(BaseModel):
    """Aggregated findings plus the verdict for the invoking context.

    Only gating (commit) reports can fail; ``gating`` records which kind of
    context produced the report.
    """

    model_config = ConfigDict(frozen=True)

    findings: tuple[Finding, ...] = ()
    verdict: Verdict = Verdict.PASS
    gating: bool = False

    @property
    def exit_code(self) -> int:
        return 1 if self.verdict is Verdict.FAIL else 0

    def count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity is severity)

    def format_lines(self) -> list[str]:
        return [f.format_line() for f in self.findings]


class FunctionSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    function_type: str
    visibility: str = "public"


class DeploymentSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    deployment: str
    schema_tables: tuple[str, ...] = ()
    functions: tuple[FunctionSpec, ...] = ()
    env_var_names: frozenset[str] = Field(default_factory=frozenset)
    fetched_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl

    def summary(self) -> dict[str, object]:
        return {
            "deployment": self.deployment,
            "tables": list(self.schema_tables),
            "functions": [
                {"identifier": f.identifier, "type": f.function_type, "visibility": f.visibility}
                for f in self.functions
            ],
            "env_var_names": sorted(self.env_var_names),
        }
