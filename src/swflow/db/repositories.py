"""Repository implementations for workflow persistence.

This module provides async repositories for CRUD operations on workflow
models using advanced-alchemy's repository pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, select

from swflow.db.models import WorkflowDefinitionModel, WorkflowInstanceModel

if TYPE_CHECKING:
    from collections.abc import Sequence

    from swflow.core.types import WorkflowStatus

__all__ = [
    "WorkflowDefinitionRepository",
    "WorkflowInstanceRepository",
]


class WorkflowDefinitionRepository(SQLAlchemyAsyncRepository[WorkflowDefinitionModel]):
    """Repository for stored workflow documents."""

    model_type = WorkflowDefinitionModel

    async def get_by_identity(self, namespace: str, name: str, version: str) -> WorkflowDefinitionModel | None:
        """Get a stored definition by its ``(namespace, name, version)`` identity.

        Args:
            namespace: The workflow namespace.
            name: The workflow name.
            version: The workflow version.

        Returns:
            The stored definition or None if not found.
        """
        stmt = select(WorkflowDefinitionModel).where(
            and_(
                WorkflowDefinitionModel.namespace == namespace,
                WorkflowDefinitionModel.name == name,
                WorkflowDefinitionModel.version == version,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_ordered(self) -> Sequence[WorkflowDefinitionModel]:
        """All stored definitions in the order they were stored."""
        stmt = select(WorkflowDefinitionModel).order_by(WorkflowDefinitionModel.created_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()


class WorkflowInstanceRepository(SQLAlchemyAsyncRepository[WorkflowInstanceModel]):
    """Repository for workflow instance CRUD operations."""

    model_type = WorkflowInstanceModel

    async def find_by_status(self, status: WorkflowStatus | None = None) -> Sequence[WorkflowInstanceModel]:
        """List instances, oldest first, optionally restricted to one status.

        Args:
            status: Optional status filter.

        Returns:
            List of workflow instances.
        """
        stmt = select(WorkflowInstanceModel).order_by(WorkflowInstanceModel.created_at)
        if status is not None:
            stmt = stmt.where(WorkflowInstanceModel.status == status)
        result = await self.session.execute(stmt)
        return result.scalars().all()
