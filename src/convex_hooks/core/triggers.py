from collections.abc import Iterable
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import PurePosixPath

from convex_hooks.models import TriggerCategory

DEFAULT_FUNCTIONS_DIR = "convex"


@dataclass(frozen=True)
class TriggerRule:
    category: TriggerCategory
    include: tuple[str, ...]
    exclude: tuple[str, ...] = ()


def default_rules(functions_dir: str = DEFAULT_FUNCTIONS_DIR) -> tuple[TriggerRule, ...]:
    root = functions_dir.strip("/")
    sources = (f"{root}/**/*.ts", f"{root}/**/*.js")
    generated = (f"{root}/_generated/**", f"{root}/**/*.d.ts")
    return (
        TriggerRule(TriggerCategory.FUNCTION_SAVE, include=sources, exclude=generated),
        TriggerRule(TriggerCategory.SCHEMA_SAVE, include=(f"{root}/schema.ts", f"{root}/schema.js")),
        TriggerRule(TriggerCategory.PRE_COMMIT, include=sources, exclude=generated),
    )


def _split(path: str) -> tuple[str, ...]:
    parts = PurePosixPath(path.replace("\\", "/")).parts
    return tuple(p for p in parts if p not in (".", ""))


def _match_segments(pattern: tuple[str, ...], parts: tuple[str, ...]) -> bool:
    if not pattern:
        return not parts
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        return any(_match_segments(rest, parts[i:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    return fnmatchcase(parts[0], head) and _match_segments(rest, parts[1:])


def glob_match(pattern: str, path: str) -> bool:
    """Case-sensitive glob over path segments; ``**`` spans any number of segments."""
    return _match_segments(_split(pattern), _split(path))


class TriggerMatcher:
    """Maps project-relative paths to the trigger categories they activate."""

    def __init__(self, rules: Iterable[TriggerRule] | None = None) -> None:
        self._rules = tuple(rules) if rules is not None else default_rules()

    @property
    def rules(self) -> tuple[TriggerRule, ...]:
        return self._rules

    def classify(self, path: str) -> frozenset[TriggerCategory]:
        categories: set[TriggerCategory] = set()
        for rule in self._rules:
            if any(glob_match(p, path) for p in rule.exclude):
                continue
            if any(glob_match(p, path) for p in rule.include):
                categories.add(rule.category)
        return frozenset(categories)


_DEFAULT_MATCHER = TriggerMatcher()


def classify(path: str) -> frozenset[TriggerCategory]:
    return _DEFAULT_MATCHER.classify(path)
