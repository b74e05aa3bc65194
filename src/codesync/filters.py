"""
Entry filter: decides which parts of a configuration tree never travel.

Caches, session logs, language packs and Electron browser storage are
large, host-specific or regenerable. Live sockets and SQLite journals
are meaningless on another machine. workspaceStorage and globalStorage
look like browser storage but carry per-workspace user state, so they
are kept.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

logger = logging.getLogger("codesync.filters")

RETAINED_DIRS = frozenset({"workspaceStorage", "globalStorage"})


class FilterDecision(str, Enum):
    """What the walk should do with one entry."""

    INCLUDE = "include"
    EXCLUDE = "exclude"
    SKIP_SUBTREE = "skip_subtree"


@dataclass(frozen=True)
class FilterRule:
    """A named exclusion rule.

    Attributes:
        name: Rule identifier, reported in debug logs.
        components: Path components matched exactly.
        name_suffixes: Only the final segment is checked against these.
    """

    name: str
    components: frozenset[str] = field(default_factory=frozenset)
    name_suffixes: tuple[str, ...] = ()

    def matches_component(self, part: str) -> bool:
        """Whether a single path component is covered by this rule."""
        return part in self.components

    def matches_name(self, name: str) -> bool:
        """Whether the final path segment is covered by this rule."""
        return any(name.endswith(s) for s in self.name_suffixes)


DEFAULT_RULES: tuple[FilterRule, ...] = (
    FilterRule(
        name="caches",
        components=frozenset({
            "Cache",
            "CachedData",
            "CachedExtensions",
            "CachedExtensionVSIXs",
            "CachedProfilesData",
            "Code Cache",
            "GPUCache",
            "DawnCache",
            "GrShaderCache",
            "ShaderCache",
            "Service Worker",
        }),
    ),
    FilterRule(name="session-logs", components=frozenset({"logs"})),
    FilterRule(
        name="language-packs",
        components=frozenset({"clp", "languagepacks", "languagepacks.json"}),
    ),
    FilterRule(
        name="browser-storage",
        components=frozenset({
            "Local Storage",
            "Session Storage",
            "Shared Dictionary",
            "WebStorage",
            "IndexedDB",
            "blob_storage",
        }),
    ),
    FilterRule(name="runtime-files", name_suffixes=(".sock", "-journal")),
)


def split_path(rel_path: str) -> list[str]:
    """Split a relative path on both '/' and the OS separator."""
    normalized = rel_path.replace(os.sep, "/")
    return [p for p in normalized.split("/") if p and p != "."]


class EntryFilter:
    """Applies exclusion rules to paths relative to a configuration root.

    Args:
        rules: Rules to apply. Defaults to DEFAULT_RULES.
        retained: Components that component rules never match.
        extra_excludes: Additional exact component names to drop.
    """

    def __init__(
        self,
        rules: Optional[Iterable[FilterRule]] = None,
        retained: Iterable[str] = RETAINED_DIRS,
        extra_excludes: Iterable[str] = (),
    ):
        self.rules = list(DEFAULT_RULES if rules is None else rules)
        extra = frozenset(extra_excludes)
        if extra:
            self.rules.append(FilterRule(name="configured", components=extra))
        self.retained = frozenset(retained)

    def match(self, rel_path: str) -> Optional[str]:
        """Return the name of the first rule excluding a path, or None."""
        parts = split_path(rel_path)
        if not parts:
            return None

        for part in parts:
            if part in self.retained:
                continue
            for rule in self.rules:
                if rule.matches_component(part):
                    return rule.name

        for rule in self.rules:
            if rule.matches_name(parts[-1]):
                return rule.name
        return None

    def decide(self, rel_path: str, is_dir: bool = False) -> FilterDecision:
        """Decide whether an entry is transferred.

        Args:
            rel_path: Path relative to the configuration root.
            is_dir: Whether the entry is a directory.

        Returns:
            FilterDecision: SKIP_SUBTREE for excluded directories.
        """
        rule = self.match(rel_path)
        if rule is None:
            return FilterDecision.INCLUDE
        logger.debug("Excluded %s (%s)", rel_path, rule)
        return FilterDecision.SKIP_SUBTREE if is_dir else FilterDecision.EXCLUDE

    def includes(self, rel_path: str, is_dir: bool = False) -> bool:
        """Shorthand for decide(...) == INCLUDE."""
        return self.decide(rel_path, is_dir) is FilterDecision.INCLUDE
