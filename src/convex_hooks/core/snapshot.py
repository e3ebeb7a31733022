"""Cached, single-flight access to deployment metadata.

The snapshot only feeds advisory features. Callers that cannot get one are
expected to skip whatever depended on it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from convex_hooks.config import DEPLOY_KEY_ENV, DEPLOYMENT_ENV
from convex_hooks.core.codegen import CommandResult, SubprocessCommandRunner
from convex_hooks.errors import ConfigurationMissing, DeploymentUnavailable
from convex_hooks.models import DeploymentSnapshot, FunctionSpec

logger = logging.getLogger(__name__)

_TABLE_LINE = re.compile(r"^[A-Za-z_]\w*$")


@dataclass(frozen=True)
class DeploymentCredentials:
    deployment: str
    deploy_key: str = field(repr=False)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> DeploymentCredentials:
        env = os.environ if environ is None else environ
        missing = [name for name in (DEPLOYMENT_ENV, DEPLOY_KEY_ENV) if not env.get(name)]
        if missing:
            raise ConfigurationMissing(missing)
        return cls(deployment=env[DEPLOYMENT_ENV], deploy_key=env[DEPLOY_KEY_ENV])


@dataclass(frozen=True)
class DeploymentMetadata:
    schema_tables: tuple[str, ...] = ()
    functions: tuple[FunctionSpec, ...] = ()
    env_var_names: frozenset[str] = frozenset()


class SnapshotFetcher(Protocol):
    async def fetch(self, credentials: DeploymentCredentials) -> DeploymentMetadata: ...


class ConvexCliFetcher:
    """Reads deployment metadata through the ``convex`` CLI.

    The three commands share one ``timeout`` budget.
    """

    def __init__(self, cwd: str | Path, timeout: float = 30.0, npx: Sequence[str] = ("npx", "convex")) -> None:
        self._cwd = Path(cwd)
        self._timeout = timeout
        self._npx = tuple(npx)

    async def fetch(self, credentials: DeploymentCredentials) -> DeploymentMetadata:
        deadline = asyncio.get_running_loop().time() + self._timeout
        spec = await self._run(credentials, deadline, "function-spec")
        env_list = await self._run(credentials, deadline, "env", "list")
        tables = await self._run(credentials, deadline, "data")
        return DeploymentMetadata(
            schema_tables=parse_table_list(tables.stdout),
            functions=parse_function_spec(spec.stdout),
            env_var_names=parse_env_list(env_list.stdout),
        )

    async def _run(self, credentials: DeploymentCredentials, deadline: float, *args: str) -> CommandResult:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise DeploymentUnavailable(f"convex {' '.join(args)} skipped: {self._timeout:g}s budget spent")
        env = {**os.environ, DEPLOY_KEY_ENV: credentials.deploy_key}
        runner = SubprocessCommandRunner([*self._npx, *args], cwd=self._cwd, timeout=remaining, env=env)
        result = await runner.run()
        if not result.ok:
            raise DeploymentUnavailable(f"convex {' '.join(args)} failed: {result.output.strip()}")
        return result


def parse_function_spec(output: str) -> tuple[FunctionSpec, ...]:
    try:
        data: Any = json.loads(output)
    except json.JSONDecodeError as exc:
        raise DeploymentUnavailable(f"Unreadable function spec: {exc}") from exc
    entries = data.get("functions", []) if isinstance(data, dict) else []
    specs: list[FunctionSpec] = []
    for entry in entries:
        if not isinstance(entry, dict) or "identifier" not in entry:
            continue
        visibility = entry.get("visibility")
        specs.append(
            FunctionSpec(
                identifier=str(entry["identifier"]),
                function_type=str(entry.get("functionType", "")),
                visibility=str(visibility.get("kind", "public")) if isinstance(visibility, dict) else "public",
            )
        )
    return tuple(specs)


def parse_env_list(output: str) -> frozenset[str]:
    names = set()
    for line in output.splitlines():
        name, sep, _ = line.partition("=")
        if sep and name.strip():
            names.add(name.strip())
    return frozenset(names)


def parse_table_list(output: str) -> tuple[str, ...]:
    return tuple(line.strip() for line in output.splitlines() if _TABLE_LINE.match(line.strip()))


class DeploymentSnapshotCache:
    """TTL cache in front of a ``SnapshotFetcher`` with at most one fetch in flight."""

    def __init__(
        self,
        fetcher: SnapshotFetcher,
        ttl_seconds: float = 300.0,
        fetch_timeout: float = 30.0,
        credentials: Callable[[], DeploymentCredentials] = DeploymentCredentials.from_env,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._ttl = ttl_seconds
        self._fetch_timeout = fetch_timeout
        self._credentials = credentials
        self._clock = clock
        self._snapshot: DeploymentSnapshot | None = None
        self._inflight: asyncio.Task[DeploymentSnapshot] | None = None
        self.fetch_count = 0

    @property
    def snapshot(self) -> DeploymentSnapshot | None:
        return self._snapshot

    @property
    def fetching(self) -> bool:
        return self._inflight is not None

    async def get_snapshot(self, force_refresh: bool = False) -> DeploymentSnapshot:
        credentials = self._credentials()

        cached = self._snapshot
        if cached is not None and not force_refresh and cached.is_fresh(self._clock()):
            return cached

        task = self._inflight
        if task is None:
            task = asyncio.create_task(self._refresh(credentials))
            self._inflight = task
        # shield: a cancelled caller must not cancel the fetch other callers share
        return await asyncio.shield(task)

    async def _refresh(self, credentials: DeploymentCredentials) -> DeploymentSnapshot:
        try:
            self.fetch_count += 1
            logger.info("Fetching deployment metadata for %s", credentials.deployment)
            try:
                metadata = await asyncio.wait_for(self._fetcher.fetch(credentials), timeout=self._fetch_timeout)
            except Exception as exc:
                previous = self._snapshot
                if previous is None:
                    raise DeploymentUnavailable(f"Could not fetch deployment {credentials.deployment}: {exc}") from exc
                logger.warning(
                    "Deployment fetch failed, serving snapshot from %.0fs ago: %s",
                    previous.age(self._clock()),
                    exc,
                )
                return previous

            snapshot = DeploymentSnapshot(
                deployment=credentials.deployment,
                schema_tables=metadata.schema_tables,
                functions=metadata.functions,
                env_var_names=metadata.env_var_names,
                fetched_at=self._clock(),
                ttl=self._ttl,
            )
            self._snapshot = snapshot
            return snapshot
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None
