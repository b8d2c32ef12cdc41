"""Fingerprint-based classification of source files."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Collection, Mapping, Tuple


@dataclass(frozen=True)
class FileChanges:
    """Paths grouped by how they differ from the last persisted index."""

    new: Tuple[str, ...] = ()
    changed: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    unchanged: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.new or self.changed or self.removed)

    @property
    def to_process(self) -> Tuple[str, ...]:
        """Paths whose fresh chunks must be produced."""

        return self.new + self.changed


class ChangeDetector:
    """Compares current fingerprints against the stored fingerprint table."""

    def detect(
        self,
        stored: Mapping[str, str],
        current: Mapping[str, str],
        *,
        preserved: Collection[str] = (),
        force: bool = False,
    ) -> FileChanges:
        """Classify every known path.

        ``preserved`` paths could not be read this pass; when they were
        indexed before they are left alone instead of being treated as
        removed. ``force`` reports every present, previously stored path as
        changed.
        """

        preserved_set = set(preserved)
        new: list[str] = []
        changed: list[str] = []
        unchanged: list[str] = []
        for path in sorted(current):
            stored_hash = stored.get(path)
            if stored_hash is None:
                new.append(path)
            elif force or stored_hash != current[path]:
                changed.append(path)
            else:
                unchanged.append(path)
        removed: list[str] = []
        for path in sorted(stored):
            if path in current:
                continue
            if path in preserved_set:
                unchanged.append(path)
            else:
                removed.append(path)
        return FileChanges(
            new=tuple(new),
            changed=tuple(changed),
            removed=tuple(removed),
            unchanged=tuple(unchanged),
        )
