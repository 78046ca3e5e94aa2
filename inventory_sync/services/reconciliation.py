from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class ReconcileAction(str, Enum):
    LINK = 'link'
    UPDATE = 'update'
    CREATE = 'create'


@dataclass(frozen=True)
class Resolution:
    action: ReconcileAction
    target_id: int | None = None


class LocalCandidate(Protocol):
    id: int
    name: str

    @property
    def external_id(self) -> str | None: ...


def normalize_name(name: str | None) -> str:
    return (name or '').strip().casefold()


def prefer_external(local_value: str | None, external_value: str | None) -> str | None:
    """Value for a linked row: the POS wins whenever it provides something."""
    return external_value if external_value else local_value


def fill_empty(local_value: str | None, external_value: str | None) -> str | None:
    """Value for a freshly linked row: local data wins, the POS only fills gaps."""
    return local_value if local_value else external_value


class CandidateIndex:
    """In-memory view of a tenant's local rows used to resolve external records.

    Built once per sync run from a single bulk query. ``claim`` must be called
    after a row is linked or created so later records in the same run see it.
    """

    def __init__(self, candidates: Iterable[LocalCandidate]) -> None:
        self._by_external: dict[str, LocalCandidate] = {}
        self._local_only: dict[str, list[LocalCandidate]] = {}
        for row in candidates:
            self._add(row)

    def _add(self, row: LocalCandidate) -> None:
        if row.external_id is not None:
            self._by_external.setdefault(str(row.external_id), row)
            return
        self._local_only.setdefault(normalize_name(row.name), []).append(row)

    def resolve(self, external_id: str, external_name: str | None) -> Resolution:
        linked = self._by_external.get(str(external_id))
        if linked is not None:
            return Resolution(ReconcileAction.UPDATE, linked.id)

        matches = self._local_only.get(normalize_name(external_name))
        if matches:
            target = min(matches, key=lambda row: row.id)
            return Resolution(ReconcileAction.LINK, target.id)
        return Resolution(ReconcileAction.CREATE)

    def claim(self, row: LocalCandidate) -> None:
        for name, rows in list(self._local_only.items()):
            remaining = [candidate for candidate in rows if candidate is not row]
            if len(remaining) != len(rows):
                if remaining:
                    self._local_only[name] = remaining
                else:
                    del self._local_only[name]
        self._add(row)

    def local_only(self) -> list[LocalCandidate]:
        return [row for rows in self._local_only.values() for row in rows]


def resolve(external_id: str, external_name: str | None, candidates: Iterable[LocalCandidate]) -> Resolution:
    return CandidateIndex(candidates).resolve(external_id, external_name)
