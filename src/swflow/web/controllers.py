"""REST API controllers for workflow management.

This module provides three controller classes:
- WorkflowDefinitionController: List registered workflow definitions
- WorkflowInstanceController: Start, inspect and cancel workflow instances
- EventController: Publish events into the engine
"""

from __future__ import annotations

from typing import ClassVar
from uuid import UUID

from litestar import Controller, get, post
from litestar.exceptions import HTTPException, NotFoundException
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_409_CONFLICT

from swflow.core.events import CloudEvent
from swflow.core.types import WorkflowStatus
from swflow.engine.local import LocalExecutionEngine  # noqa: TC001 - needed for DI
from swflow.engine.registry import WorkflowRegistry  # noqa: TC001 - needed for DI
from swflow.exceptions import WorkflowAlreadyCompletedError, WorkflowInstanceNotFoundError, WorkflowNotFoundError
from swflow.web.dto import (
    CancelWorkflowDTO,
    PublishEventDTO,
    PublishResultDTO,
    StartWorkflowDTO,
    WorkflowDefinitionDTO,
    WorkflowInstanceDetailDTO,
    WorkflowInstanceDTO,
)

__all__ = [
    "EventController",
    "WorkflowDefinitionController",
    "WorkflowInstanceController",
]


class WorkflowDefinitionController(Controller):
    """API controller for workflow definitions.

    Tags: Workflow Definitions
    """

    path = "/definitions"
    tags: ClassVar[list[str]] = ["Workflow Definitions"]

    @get("/")
    async def list_definitions(
        self,
        workflow_registry: WorkflowRegistry,
        latest_only: bool = Parameter(
            default=True,
            description="Only return the latest version of each workflow",
        ),
    ) -> list[WorkflowDefinitionDTO]:
        """List all registered workflow definitions.

        Args:
            workflow_registry: Injected workflow registry.
            latest_only: If True, only return the latest version of each workflow.

        Returns:
            List of workflow definition DTOs.
        """
        return [
            WorkflowDefinitionDTO.from_definition(definition)
            for definition in workflow_registry.list_definitions(latest_only=latest_only)
        ]

    @get("/{name:str}")
    async def get_definition(
        self,
        name: str,
        workflow_registry: WorkflowRegistry,
        version: str | None = Parameter(default=None, description="Specific version to retrieve"),
        namespace: str | None = Parameter(default=None, description="Namespace of the workflow"),
    ) -> WorkflowDefinitionDTO:
        """Get a specific workflow definition by name.

        Raises:
            NotFoundException: If the definition is not registered.
        """
        try:
            definition = workflow_registry.get_definition(name, version, namespace)
        except WorkflowNotFoundError as e:
            raise NotFoundException(detail=str(e)) from e
        return WorkflowDefinitionDTO.from_definition(definition)


class WorkflowInstanceController(Controller):
    """API controller for workflow instances.

    Provides endpoints for starting, listing, inspecting and cancelling
    workflow instances.

    Tags: Workflow Instances
    """

    path = "/instances"
    tags: ClassVar[list[str]] = ["Workflow Instances"]

    @post("/")
    async def start_workflow(
        self,
        data: StartWorkflowDTO,
        workflow_engine: LocalExecutionEngine,
    ) -> WorkflowInstanceDTO:
        """Start a new workflow instance.

        Args:
            data: Workflow start parameters.
            workflow_engine: Injected execution engine.

        Returns:
            The created instance. It keeps running in the background.

        Raises:
            NotFoundException: If the workflow definition is not registered.
        """
        try:
            instance = await workflow_engine.start_workflow(
                data.name,
                data.input,
                version=data.version,
                namespace=data.namespace,
            )
        except WorkflowNotFoundError as e:
            raise NotFoundException(detail=str(e)) from e
        return WorkflowInstanceDTO.from_instance(instance)

    @get("/")
    async def list_instances(
        self,
        workflow_engine: LocalExecutionEngine,
        status: WorkflowStatus | None = Parameter(
            default=None,
            description="Filter by status",
        ),
        workflow_name: str | None = Parameter(
            default=None,
            description="Filter by workflow name",
        ),
        limit: int = Parameter(
            default=50,
            le=100,
            description="Maximum number of results",
        ),
        offset: int = Parameter(
            default=0,
            ge=0,
            description="Number of results to skip",
        ),
    ) -> list[WorkflowInstanceDTO]:
        """List workflow instances with optional filtering.

        Args:
            workflow_engine: Injected execution engine.
            status: Optional status filter.
            workflow_name: Optional workflow name filter.
            limit: Maximum number of results.
            offset: Pagination offset.

        Returns:
            List of workflow instance DTOs, oldest first.
        """
        instances = await workflow_engine.list_instances(status)
        if workflow_name:
            instances = [instance for instance in instances if instance.workflow_name == workflow_name]
        return [WorkflowInstanceDTO.from_instance(instance) for instance in instances[offset : offset + limit]]

    @get("/{instance_id:uuid}")
    async def get_instance(
        self,
        instance_id: UUID,
        workflow_engine: LocalExecutionEngine,
    ) -> WorkflowInstanceDetailDTO:
        """Get detailed workflow instance information.

        Raises:
            NotFoundException: If the instance is not found.
        """
        try:
            instance = await workflow_engine.get_instance(instance_id)
        except WorkflowInstanceNotFoundError as e:
            raise NotFoundException(detail=f"Workflow instance {instance_id} not found") from e
        return WorkflowInstanceDetailDTO.from_instance(instance)

    @post("/{instance_id:uuid}/cancel", status_code=HTTP_200_OK)
    async def cancel_instance(
        self,
        instance_id: UUID,
        workflow_engine: LocalExecutionEngine,
        data: CancelWorkflowDTO | None = None,
    ) -> WorkflowInstanceDetailDTO:
        """Cancel a running or suspended workflow instance.

        Args:
            instance_id: The workflow instance ID.
            workflow_engine: Injected execution engine.
            data: Optional cancellation reason.

        Returns:
            The terminated instance.

        Raises:
            NotFoundException: If the instance is not found.
            HTTPException: 409 if the instance already reached a terminal status.
        """
        reason = data.reason if data is not None else "Cancelled"
        try:
            instance = await workflow_engine.cancel_workflow(instance_id, reason)
        except WorkflowInstanceNotFoundError as e:
            raise NotFoundException(detail=f"Workflow instance {instance_id} not found") from e
        except WorkflowAlreadyCompletedError as e:
            raise HTTPException(status_code=HTTP_409_CONFLICT, detail=str(e)) from e
        return WorkflowInstanceDetailDTO.from_instance(instance)


class EventController(Controller):
    """API controller for event ingestion.

    Tags: Workflow Events
    """

    path = "/events"
    tags: ClassVar[list[str]] = ["Workflow Events"]

    @post("/", status_code=HTTP_200_OK)
    async def publish_event(
        self,
        data: PublishEventDTO,
        workflow_engine: LocalExecutionEngine,
    ) -> PublishResultDTO:
        """Publish an event to waiting listeners and event-started workflows.

        Args:
            data: The event envelope.
            workflow_engine: Injected execution engine.

        Returns:
            The event id and the instances it resumed or started.
        """
        event = CloudEvent.from_dict(data.to_envelope())
        instance_ids = await workflow_engine.publish(event)
        return PublishResultDTO(event_id=event.id, instance_ids=instance_ids)
