"""Shared fixtures and helpers for tests."""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from convex_hooks.core.checks import default_registry
from convex_hooks.core.dispatch import HookDispatcher
from convex_hooks.core.runner import CheckRunner

_REPO_ROOT = Path(__file__).parent.parent


# ---------------------------------------------------------------------------
# Auto-marker: tag tests as "unit" or "integration" based on directory
# ---------------------------------------------------------------------------


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        test_path = Path(str(item.fspath))
        rel = test_path.relative_to(_REPO_ROOT / "tests")
        parts = rel.parts
        if parts and parts[0] == "integration":
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# ---------------------------------------------------------------------------
# Convex sources
# ---------------------------------------------------------------------------

SCHEMA_TS = """\
import { defineSchema, defineTable } from "convex/server";
import { v } from "convex/values";

export default defineSchema({
  channels: defineTable({
    name: v.string(),
  }),
  messages: defineTable({
    channel: v.id("channels"),
    author: v.string(),
    body: v.string(),
  })
    .index("by_channel", ["channel"])
    .index("by_channel_and_author", ["channel", "author"]),
});
"""

# A query scanning an indexed field with .filter(); the call starts on line 8.
MESSAGES_TS = """\
import { query } from "./_generated/server";
import { v } from "convex/values";

export const list = query({
  args: { channel: v.id("channels") },
  returns: v.array(v.any()),
  handler: async (ctx, args) => {
    return await ctx.db
      .query("messages")
      .filter((q) => q.eq(q.field("channel"), args.channel))
      .collect();
  },
});
"""

# A mutation without an args validator; the definition starts on line 4.
SEND_TS = """\
import { mutation } from "./_generated/server";
import { v } from "convex/values";

export const send = mutation({
  returns: v.null(),
  handler: async (ctx) => {
    await ctx.db.insert("messages", { body: "hi" });
    return null;
  },
});
"""

CLEAN_TS = """\
import { internalMutation } from "./_generated/server";
import { v } from "convex/values";

export const archive = internalMutation({
  args: { id: v.id("messages") },
  returns: v.null(),
  handler: async (ctx, args) => {
    await ctx.db.delete(args.id);
    return null;
  },
});
"""


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Return a minimal Convex project root."""
    convex = tmp_path / "convex"
    (convex / "_generated").mkdir(parents=True)
    (convex / "schema.ts").write_text(SCHEMA_TS, encoding="utf-8")
    (convex / "messages.ts").write_text(MESSAGES_TS, encoding="utf-8")
    (convex / "send.ts").write_text(SEND_TS, encoding="utf-8")
    (convex / "archive.ts").write_text(CLEAN_TS, encoding="utf-8")
    (convex / "_generated" / "api.d.ts").write_text("export declare const api: any;\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("# demo\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def dispatcher(project: Path) -> HookDispatcher:
    return HookDispatcher(project, CheckRunner(default_registry()))


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Undo the CLI's logging setup so caplog keeps working across tests."""
    yield
    logger = logging.getLogger("convex_hooks")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
