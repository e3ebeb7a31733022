"""Wires file events to the check runner, aggregator, codegen and snapshot cache."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path

from convex_hooks.config import HookSettings
from convex_hooks.core.aggregate import aggregate
from convex_hooks.core.checks import CheckContext, RuleRegistry, default_registry
from convex_hooks.core.codegen import CodegenOrchestrator, SubprocessCommandRunner
from convex_hooks.core.runner import CheckRunner
from convex_hooks.core.snapshot import ConvexCliFetcher, DeploymentSnapshotCache
from convex_hooks.core.source import IndexDef, SourceFile, parse_source
from convex_hooks.core.triggers import TriggerMatcher, default_rules
from convex_hooks.errors import ConfigurationMissing, DeploymentUnavailable
from convex_hooks.models import DeploymentSnapshot, EventKind, FileChangeEvent, Finding, Report, TriggerCategory

logger = logging.getLogger(__name__)

_SCHEMA_FILES = ("schema.ts", "schema.js")

# Returns file content for an absolute path, or None when there is none.
ContentReader = Callable[[Path], str | None]


class HookDispatcher:
    """Routes saved and committed files through the pipeline.

    Saved files get an advisory report and, for schema files, a codegen
    submission. Committed files get a gating report built without any
    network access.
    """

    def __init__(
        self,
        root: str | Path,
        runner: CheckRunner,
        matcher: TriggerMatcher | None = None,
        *,
        functions_dir: str = "convex",
        codegen: CodegenOrchestrator | None = None,
        snapshots: DeploymentSnapshotCache | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.runner = runner
        self.matcher = matcher or TriggerMatcher(default_rules(functions_dir))
        self.functions_dir = functions_dir
        self.codegen = codegen
        self.snapshots = snapshots

    # -- paths and sources --------------------------------------------------

    def relative_path(self, path: str | Path) -> str:
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                candidate = candidate.resolve().relative_to(self.root)
            except ValueError:
                return candidate.as_posix()
        return candidate.as_posix()

    def handles(self, path: str | Path) -> bool:
        return bool(self.matcher.classify(self.relative_path(path)))

    def load_source(self, relative: str, read: ContentReader | None = None) -> SourceFile | None:
        file_path = self.root / relative
        if read is not None:
            content = read(file_path)
            if content is None:
                logger.debug("Skipping %s: no content", relative)
                return None
            return parse_source(relative, content)
        try:
            text = file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Skipping %s: file no longer exists", relative)
            return None
        except UnicodeDecodeError:
            text = file_path.read_bytes().decode("utf-8", errors="replace")
        return parse_source(relative, text)

    def schema_indexes(self, read: ContentReader | None = None) -> dict[str, tuple[IndexDef, ...]] | None:
        for name in _SCHEMA_FILES:
            relative = f"{self.functions_dir.strip('/')}/{name}"
            source = self.load_source(relative, read)
            if source is not None:
                return {table.name: table.indexes for table in source.tables}
        return None

    async def deployment_snapshot(self) -> DeploymentSnapshot | None:
        if self.snapshots is None:
            return None
        try:
            return await self.snapshots.get_snapshot()
        except (ConfigurationMissing, DeploymentUnavailable) as exc:
            logger.info("Skipping deployment-dependent checks: %s", exc)
            return None

    # -- events -------------------------------------------------------------

    async def on_saved(self, event: FileChangeEvent) -> Report:
        relative = self.relative_path(event.path)
        categories = self.matcher.classify(relative) - {TriggerCategory.PRE_COMMIT}
        if not categories:
            return aggregate([], EventKind.SAVED)

        if TriggerCategory.SCHEMA_SAVE in categories and self.codegen is not None:
            self.codegen.submit(event)

        source = self.load_source(relative)
        if source is None:
            return aggregate([], EventKind.SAVED)

        deployment = None
        if TriggerCategory.FUNCTION_SAVE in categories:
            deployment = await self.deployment_snapshot()
        context = CheckContext(indexes=self.schema_indexes(), deployment=deployment)
        return aggregate(self.runner.run_checks(source, categories, context), EventKind.SAVED)

    def gate_commit(self, paths: Iterable[str | Path], read: ContentReader | None = None) -> Report:
        """Build the gating report for *paths*.

        *read* supplies file content, e.g. the staged blob; by default files
        are read from the working tree.
        """
        indexes = self.schema_indexes(read)
        findings: list[Finding] = []
        for path in paths:
            relative = self.relative_path(path)
            if TriggerCategory.PRE_COMMIT not in self.matcher.classify(relative):
                continue
            source = self.load_source(relative, read)
            if source is None:
                continue
            findings.extend(
                self.runner.run_checks(source, {TriggerCategory.PRE_COMMIT}, CheckContext(indexes=indexes))
            )
        report = aggregate(findings, EventKind.COMMITTED)
        logger.info("Commit gate: %s with %d finding(s)", report.verdict.value, len(report.findings))
        return report

    async def dispatch(self, event: FileChangeEvent) -> Report:
        if event.kind is EventKind.COMMITTED:
            return self.gate_commit([event.path])
        return await self.on_saved(event)


def saved_event(path: str | Path) -> FileChangeEvent:
    return FileChangeEvent(path=str(path), kind=EventKind.SAVED, timestamp=datetime.now(timezone.utc))


def create_dispatcher(
    root: str | Path,
    settings: HookSettings,
    *,
    registry: RuleRegistry | None = None,
    with_codegen: bool = True,
    with_deployment: bool = True,
    on_diagnostic: Callable[[Finding], None] | None = None,
) -> HookDispatcher:
    """Build a dispatcher for *root* from resolved settings."""
    root_path = Path(root).resolve()
    resolved = (registry or default_registry()).resolve(settings.severity_overrides)

    diagnostics: Callable[[Finding], None] = on_diagnostic or _log_diagnostic
    codegen = None
    if with_codegen:
        command = SubprocessCommandRunner(
            settings.codegen_command, cwd=root_path, timeout=settings.command_timeout_seconds
        )
        codegen = CodegenOrchestrator(command, debounce_seconds=settings.debounce_seconds, on_diagnostic=diagnostics)

    snapshots = None
    if with_deployment:
        fetcher = ConvexCliFetcher(root_path, timeout=settings.fetch_timeout_seconds)
        snapshots = DeploymentSnapshotCache(
            fetcher,
            ttl_seconds=settings.snapshot_ttl_seconds,
            fetch_timeout=settings.fetch_timeout_seconds,
        )

    return HookDispatcher(
        root_path,
        CheckRunner(resolved),
        functions_dir=settings.functions_dir,
        codegen=codegen,
        snapshots=snapshots,
    )


def _log_diagnostic(finding: Finding) -> None:
    logger.error("%s", finding.format_line().rstrip())
