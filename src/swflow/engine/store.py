"""In-memory instance store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from swflow.core.models import WorkflowInstanceData

if TYPE_CHECKING:
    from uuid import UUID

    from swflow.core.types import WorkflowStatus

__all__ = ["InMemoryInstanceStore"]


class InMemoryInstanceStore:
    """Keeps serialized snapshots of instance records in a dict.

    Records are stored in their persisted layout, so a loaded record never
    shares state with the live one an engine is mutating.
    """

    def __init__(self) -> None:
        self._records: dict[UUID, dict[str, Any]] = {}

    async def save(self, instance: WorkflowInstanceData) -> None:
        self._records[instance.id] = instance.to_dict()

    async def load(self, instance_id: UUID) -> WorkflowInstanceData | None:
        record = self._records.get(instance_id)
        return WorkflowInstanceData.from_dict(record) if record is not None else None

    async def list(self, status: WorkflowStatus | None = None) -> list[WorkflowInstanceData]:
        return [
            WorkflowInstanceData.from_dict(record)
            for record in self._records.values()
            if status is None or record["status"] == status
        ]
