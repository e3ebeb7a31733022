"""Always-on Convex guidance, keyed by check id.

Static text only. The check runner appends the matching sentence to finding
messages so that every finding tells the reader what to do instead.
"""

from types import MappingProxyType

GUIDANCE = MappingProxyType(
    {
        "function-args-validator": "Declare `args` with `v.*` validators on every public and internal function.",
        "function-returns-validator": "Declare a `returns` validator; use `v.null()` when nothing is returned.",
        "query-filter-scan": "Define an index in the schema and use `.withIndex()` instead of `.filter()`.",
        "query-nondeterministic-time": "Queries must be deterministic; pass the time in as an argument instead.",
        "scheduler-public-target": "Only schedule `internal.*` functions; public functions can be called by anyone.",
        "floating-async-call": "Await every `ctx` call before the handler returns.",
        "schema-index-naming": "Name indexes after their fields, e.g. `by_channel_and_author`.",
        "deployment-env-var": "Set it with `npx convex env set NAME value`.",
    }
)


def guidance_for(check_id: str) -> str:
    return GUIDANCE.get(check_id, "")
