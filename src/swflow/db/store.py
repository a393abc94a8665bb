"""Instance store backed by SQLAlchemy.

:class:`SQLAlchemyInstanceStore` implements the ``InstanceStore`` protocol on
top of the repositories, opening a short-lived session per operation so it
can be shared by every instance an engine runs.
"""

from __future__ import annotations

import asyncio
import copy
from typing import TYPE_CHECKING

import structlog

from swflow.core.definition import WorkflowDefinition
from swflow.core.errors import WorkflowError
from swflow.core.models import WorkflowInstanceData
from swflow.db.models import WorkflowDefinitionModel, WorkflowInstanceModel
from swflow.db.repositories import WorkflowDefinitionRepository, WorkflowInstanceRepository

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from swflow.core.types import WorkflowStatus

__all__ = ["SQLAlchemyInstanceStore"]

logger = structlog.get_logger(__name__)


def _to_data(model: WorkflowInstanceModel) -> WorkflowInstanceData:
    return WorkflowInstanceData(
        id=model.id,
        namespace=model.namespace,
        workflow_name=model.workflow_name,
        workflow_version=model.workflow_version,
        status=model.status,
        created_at=model.created_at,
        input=copy.deepcopy(model.input),
        output=copy.deepcopy(model.output),
        context=copy.deepcopy(model.context or {}),
        position=model.position,
        node_states=copy.deepcopy(model.node_states or {}),
        pending_correlations=copy.deepcopy(model.pending_correlations or []),
        error=WorkflowError.from_dict(model.error) if model.error else None,
        parent_id=model.parent_id,
        started_at=model.started_at,
        completed_at=model.completed_at,
    )


def _apply(model: WorkflowInstanceModel, instance: WorkflowInstanceData) -> None:
    model.namespace = instance.namespace
    model.workflow_name = instance.workflow_name
    model.workflow_version = instance.workflow_version
    model.status = instance.status
    model.input = copy.deepcopy(instance.input)
    model.output = copy.deepcopy(instance.output)
    model.context = copy.deepcopy(instance.context)
    model.position = instance.position
    model.node_states = copy.deepcopy(instance.node_states)
    model.pending_correlations = copy.deepcopy(instance.pending_correlations)
    model.error = instance.error.to_dict() if instance.error else None
    model.parent_id = instance.parent_id
    model.started_at = instance.started_at
    model.completed_at = instance.completed_at


class SQLAlchemyInstanceStore:
    """Persists instance records and definition documents.

    Args:
        session_maker: Factory of async sessions bound to the database.

    Example:
        >>> session_maker = async_sessionmaker(engine, expire_on_commit=False)
        >>> store = SQLAlchemyInstanceStore(session_maker)
        >>> engine = LocalExecutionEngine(registry, store=store)
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker
        self._lock = asyncio.Lock()

    async def save(self, instance: WorkflowInstanceData) -> None:
        async with self._lock, self.session_maker() as session:
            repo = WorkflowInstanceRepository(session=session)
            model = await repo.get_one_or_none(id=instance.id)
            if model is None:
                model = WorkflowInstanceModel(id=instance.id, created_at=instance.created_at)
                _apply(model, instance)
                definition = await WorkflowDefinitionRepository(session=session).get_by_identity(
                    instance.namespace, instance.workflow_name, instance.workflow_version
                )
                model.definition_id = definition.id if definition else None
                await repo.add(model)
            else:
                _apply(model, instance)
            await session.commit()

    async def load(self, instance_id: UUID) -> WorkflowInstanceData | None:
        async with self.session_maker() as session:
            model = await WorkflowInstanceRepository(session=session).get_one_or_none(id=instance_id)
            return _to_data(model) if model is not None else None

    async def list(self, status: WorkflowStatus | None = None) -> list[WorkflowInstanceData]:
        async with self.session_maker() as session:
            models = await WorkflowInstanceRepository(session=session).find_by_status(status)
            return [_to_data(model) for model in models]

    async def save_definition(self, definition: WorkflowDefinition) -> None:
        """Store a definition document unless its identity is already stored."""
        async with self._lock, self.session_maker() as session:
            repo = WorkflowDefinitionRepository(session=session)
            if await repo.get_by_identity(definition.namespace, definition.name, definition.version) is not None:
                return
            await repo.add(
                WorkflowDefinitionModel(
                    namespace=definition.namespace,
                    name=definition.name,
                    version=definition.version,
                    title=definition.title,
                    document=definition.document,
                )
            )
            await session.commit()
            logger.debug("definition_stored", workflow=definition.identity)

    async def load_definitions(self) -> list[WorkflowDefinition]:
        """Parse every stored definition document, in the order they were stored."""
        async with self.session_maker() as session:
            models = await WorkflowDefinitionRepository(session=session).list_ordered()
            return [WorkflowDefinition.from_dict(model.document) for model in models]
