"""
Change-set classification.

Maps changed paths onto TCR targets by path prefix (and optional file
extension). Each path lands in at most one target: the first configured
target that matches. Paths matching no target are reported as unmatched
and do not trigger a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterable, Optional

from devloop.config import TargetConfig


def normalize_path(path: str) -> str:
    """Posix form without a leading './'."""
    text = str(path).replace("\\", "/").strip()
    while text.startswith("./"):
        text = text[2:]
    return text


@dataclass(frozen=True)
class ChangeSet:
    """Changed files bucketed by target."""
    files: tuple[str, ...] = ()
    by_target: dict[str, tuple[str, ...]] = field(default_factory=dict)
    unmatched: tuple[str, ...] = ()

    @property
    def targets(self) -> list[str]:
        """Targets with at least one changed file, in configured order."""
        return [name for name, files in self.by_target.items() if files]

    @property
    def is_empty(self) -> bool:
        return not self.targets

    @property
    def label(self) -> str:
        targets = self.targets
        if not targets:
            return "none"
        if len(targets) == 1:
            return targets[0]
        if len(targets) == 2:
            return "both"
        return "all"


class ChangeSetDetector:
    """Classifies changed files into target buckets."""

    def __init__(self, targets: list[TargetConfig]) -> None:
        self._targets = list(targets)

    def match(self, path: str) -> Optional[str]:
        """Name of the first target owning a path, or None."""
        normalized = normalize_path(path)
        suffix = PurePosixPath(normalized).suffix
        for target in self._targets:
            if target.extensions and suffix not in target.extensions:
                continue
            for prefix in target.paths:
                prefix = normalize_path(prefix)
                if prefix in ("", "."):
                    return target.name
                bare = prefix.rstrip("/")
                if normalized == bare or normalized.startswith(bare + "/"):
                    return target.name
        return None

    def classify(self, paths: Iterable[str]) -> ChangeSet:
        """
        Bucket paths by target.

        The result depends only on the set of paths: input order and
        duplicates do not matter.
        """
        files = tuple(sorted({normalize_path(p) for p in paths if str(p).strip()}))
        buckets: dict[str, list[str]] = {t.name: [] for t in self._targets}
        unmatched: list[str] = []
        for path in files:
            name = self.match(path)
            if name is None:
                unmatched.append(path)
            else:
                buckets[name].append(path)
        return ChangeSet(
            files=files,
            by_target={name: tuple(items) for name, items in buckets.items()},
            unmatched=tuple(unmatched),
        )
