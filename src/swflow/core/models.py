"""Concrete data models for swflow.

This module provides the workflow instance record: the persisted state an
engine needs to resume an instance after a restart without replaying the
tasks it already completed.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from swflow.core.errors import WorkflowError
from swflow.core.types import WorkflowStatus

__all__ = ["WorkflowInstanceData"]


@dataclass
class WorkflowInstanceData:
    """State of one workflow instance.

    Only :class:`~swflow.engine.instance.WorkflowStateMachine` mutates
    ``status``, ``position``, ``context``, ``node_states`` and
    ``pending_correlations``; every other component treats the record as
    read-only.

    Attributes:
        id: Unique identifier for this workflow instance.
        namespace: Namespace of the workflow definition.
        workflow_name: Name of the workflow definition.
        workflow_version: Version of the workflow definition.
        status: Current lifecycle status.
        input: Raw workflow input as supplied at instantiation.
        output: Transformed workflow output once completed.
        context: Current ``$context`` value.
        position: JSON pointer of the task the main frame is executing.
        node_states: Resume checkpoints keyed by position.
        pending_correlations: Serialized listeners still waiting for events.
        error: Final error record when the instance failed.
        parent_id: Instance that started this one through ``run.workflow``.
        created_at: Timestamp when the instance was created.
        started_at: Timestamp when execution started.
        completed_at: Timestamp when the instance reached a terminal status.
    """

    id: UUID
    namespace: str
    workflow_name: str
    workflow_version: str
    status: WorkflowStatus
    created_at: datetime
    input: Any = None
    output: Any = None
    context: dict[str, Any] = field(default_factory=dict)
    position: str | None = None
    node_states: dict[str, dict[str, Any]] = field(default_factory=dict)
    pending_correlations: list[dict[str, Any]] = field(default_factory=list)
    error: WorkflowError | None = None
    parent_id: UUID | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def definition_ref(self) -> dict[str, str]:
        return {"namespace": self.namespace, "name": self.workflow_name, "version": self.workflow_version}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the engine-agnostic persisted layout."""
        return {
            "id": str(self.id),
            "definition": self.definition_ref,
            "status": self.status.value,
            "input": copy.deepcopy(self.input),
            "output": copy.deepcopy(self.output),
            "context": copy.deepcopy(self.context),
            "position": self.position,
            "node_states": copy.deepcopy(self.node_states),
            "pending_correlations": copy.deepcopy(self.pending_correlations),
            "error": self.error.to_dict() if self.error else None,
            "parent_id": str(self.parent_id) if self.parent_id else None,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowInstanceData:
        definition = data["definition"]
        return cls(
            id=UUID(str(data["id"])),
            namespace=definition["namespace"],
            workflow_name=definition["name"],
            workflow_version=definition["version"],
            status=WorkflowStatus(data["status"]),
            input=copy.deepcopy(data.get("input")),
            output=copy.deepcopy(data.get("output")),
            context=copy.deepcopy(data.get("context") or {}),
            position=data.get("position"),
            node_states=copy.deepcopy(data.get("node_states") or {}),
            pending_correlations=copy.deepcopy(data.get("pending_correlations") or []),
            error=WorkflowError.from_dict(data["error"]) if data.get("error") else None,
            parent_id=UUID(str(data["parent_id"])) if data.get("parent_id") else None,
            created_at=datetime.fromisoformat(data["created_at"]),
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
        )
