"""In-memory registry of units live in the current deployment run."""

from __future__ import annotations

from typing import Iterator

from shipyard.domain import DeploymentRecord, InternalConsistencyError, UnitKind


class DeploymentRegistry:
    """Insertion-ordered records keyed by unit name.

    One registry belongs to one deployment run. It holds no lock and must not be
    mutated from more than one thread.
    """

    def __init__(self) -> None:
        self._records: dict[str, DeploymentRecord] = {}

    def registry_insert(self, record: DeploymentRecord) -> None:
        """Add the record of a newly deployed unit.

        Raises:
            InternalConsistencyError: Raised when the unit is already registered.
        """

        if record.unit_name in self._records:
            raise InternalConsistencyError(f"unit {record.unit_name} is already registered")
        self._records[record.unit_name] = record

    def registry_remove(self, unit_name: str) -> DeploymentRecord | None:
        """Remove and return one record; None when the unit is not registered."""

        return self._records.pop(unit_name, None)

    def registry_get(self, unit_name: str) -> DeploymentRecord | None:
        return self._records.get(unit_name)

    def registry_contains(self, unit_name: str) -> bool:
        return unit_name in self._records

    def registry_records(self) -> tuple[DeploymentRecord, ...]:
        """Return a snapshot of all records in insertion order."""

        return tuple(self._records.values())

    def registry_records_by_kind(self, kind: UnitKind) -> tuple[DeploymentRecord, ...]:
        """Return a snapshot of records of one kind in insertion order."""

        return tuple(record for record in self._records.values() if record.kind is kind)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[DeploymentRecord]:
        return iter(self.registry_records())
