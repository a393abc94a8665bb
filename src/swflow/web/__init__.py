"""REST API for swflow.

The controllers are registered automatically by
:class:`~swflow.plugin.WorkflowPlugin` when ``enable_api=True`` (the default).

Example:
    Basic usage with WorkflowPlugin::

        from litestar import Litestar
        from swflow import WorkflowPlugin, WorkflowPluginConfig

        app = Litestar(
            plugins=[
                WorkflowPlugin(
                    config=WorkflowPluginConfig(
                        api_path_prefix="/workflows",
                        api_guards=[require_auth_guard],
                    )
                ),
            ],
        )
"""

from __future__ import annotations

from swflow.web.controllers import EventController, WorkflowDefinitionController, WorkflowInstanceController
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
    "CancelWorkflowDTO",
    "EventController",
    "PublishEventDTO",
    "PublishResultDTO",
    "StartWorkflowDTO",
    "WorkflowDefinitionController",
    "WorkflowDefinitionDTO",
    "WorkflowInstanceController",
    "WorkflowInstanceDTO",
    "WorkflowInstanceDetailDTO",
]
