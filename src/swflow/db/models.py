"""SQLAlchemy models for workflow persistence.

This module defines the database models for persisting workflow state:
- WorkflowDefinitionModel: Stores registered workflow documents
- WorkflowInstanceModel: Stores instance records in their persisted layout
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, Enum, ForeignKey, Index, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from swflow.core.types import WorkflowStatus

__all__ = [
    "JSONType",
    "WorkflowDefinitionModel",
    "WorkflowInstanceModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class WorkflowDefinitionModel(UUIDAuditBase):
    """Persisted workflow document.

    Attributes:
        namespace: Namespace of the workflow.
        name: Workflow name.
        version: Semantic version string (e.g., "1.0.0").
        title: Human-readable title from the document header.
        document: The full workflow document as JSON.
        instances: Related workflow instances.
    """

    __tablename__ = "swflow_definitions"
    __table_args__ = (
        Index("ix_swflow_definitions_identity", "namespace", "name", "version", unique=True),
    )

    namespace: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255), index=True)
    version: Mapped[str] = mapped_column(String(50))
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    document: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    instances: Mapped[list[WorkflowInstanceModel]] = relationship(
        back_populates="definition",
        lazy="noload",
    )


class WorkflowInstanceModel(UUIDAuditBase):
    """Persisted workflow instance record.

    The columns mirror :meth:`swflow.core.models.WorkflowInstanceData.to_dict`:
    everything an engine needs to resume the instance after a restart.

    Attributes:
        definition_id: Foreign key to the stored definition, when it was stored.
        namespace: Namespace of the definition.
        workflow_name: Denormalized workflow name for quick queries.
        workflow_version: Denormalized workflow version.
        status: Current lifecycle status.
        input: Raw workflow input.
        output: Transformed output once completed.
        context: Current ``$context``.
        position: JSON pointer of the main frame's task.
        node_states: Resume checkpoints keyed by position.
        pending_correlations: Serialized listeners still waiting for events.
        error: Final error record of a failed instance.
        parent_id: Instance that started this one as a subworkflow.
        started_at: Timestamp when execution began.
        completed_at: Timestamp when execution finished.
    """

    __tablename__ = "swflow_instances"
    __table_args__ = (
        Index("ix_swflow_instances_status", "status"),
        Index("ix_swflow_instances_workflow", "namespace", "workflow_name"),
        Index("ix_swflow_instances_parent_id", "parent_id"),
    )

    definition_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("swflow_definitions.id", ondelete="SET NULL"),
        nullable=True,
    )
    namespace: Mapped[str] = mapped_column(String(255))
    workflow_name: Mapped[str] = mapped_column(String(255))
    workflow_version: Mapped[str] = mapped_column(String(50))
    status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus, native_enum=False, length=50),
        default=WorkflowStatus.CREATED,
    )
    input: Mapped[Any] = mapped_column(JSONType, nullable=True)
    output: Mapped[Any] = mapped_column(JSONType, nullable=True)
    context: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    position: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    node_states: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    pending_correlations: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    error: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    parent_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTimeUTC(timezone=True),
        nullable=True,
    )

    definition: Mapped[WorkflowDefinitionModel | None] = relationship(
        back_populates="instances",
        lazy="noload",
    )
