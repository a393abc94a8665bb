"""Litestar plugin for workflow integration.

This module provides the WorkflowPlugin for integrating swflow with
Litestar applications.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from swflow.config import EngineConfig
from swflow.engine.local import LocalExecutionEngine
from swflow.engine.registry import WorkflowRegistry
from swflow.log import configure_logging

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

    from swflow.core.definition import WorkflowDefinition

__all__ = ["WorkflowPlugin", "WorkflowPluginConfig"]


@dataclass
class WorkflowPluginConfig:
    """Configuration for the WorkflowPlugin.

    Attributes:
        registry: Optional pre-configured WorkflowRegistry. If not provided,
            a new one will be created.
        engine: Optional pre-configured LocalExecutionEngine. If not provided,
            one is created from the registry and ``engine_config``.
        engine_config: Settings for the engine the plugin creates.
        definitions: Workflow definitions, or documents, registered on app init.
        dependency_key_registry: The key used for dependency injection of
            the WorkflowRegistry. Defaults to "workflow_registry".
        dependency_key_engine: The key used for dependency injection of
            the engine. Defaults to "workflow_engine".
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all workflow API endpoints.
            Defaults to "/workflows".
        api_guards: List of Litestar guards to apply to all workflow API endpoints.
        api_tags: OpenAPI tags to apply to workflow API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
        start_schedules: Start ``schedule.every``/``schedule.after`` timers on startup.
        configure_logging: Configure structlog from the engine's log settings on startup.
    """

    registry: WorkflowRegistry | None = None
    engine: LocalExecutionEngine | None = None
    engine_config: EngineConfig | None = None
    definitions: list[WorkflowDefinition | dict[str, Any]] = field(default_factory=list)
    dependency_key_registry: str = "workflow_registry"
    dependency_key_engine: str = "workflow_engine"
    enable_api: bool = True
    api_path_prefix: str = "/workflows"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Workflows"])
    include_api_in_schema: bool = True
    start_schedules: bool = True
    configure_logging: bool = False


class WorkflowPlugin(InitPluginProtocol):
    """Litestar plugin for workflow management.

    This plugin integrates swflow with a Litestar application, providing
    dependency injection for the WorkflowRegistry and the engine, the REST
    API, and the engine lifecycle (schedules on startup, shutdown on exit).

    Example:
        Basic usage with auto-registration::

            from litestar import Litestar
            from swflow import WorkflowPlugin, WorkflowPluginConfig

            app = Litestar(
                plugins=[
                    WorkflowPlugin(
                        config=WorkflowPluginConfig(
                            definitions=[WorkflowDefinition.from_yaml(Path("order.yaml").read_text())]
                        )
                    )
                ]
            )

        Using in a route handler::

            from litestar import post
            from swflow import LocalExecutionEngine


            @post("/orders")
            async def place_order(data: dict, workflow_engine: LocalExecutionEngine) -> dict:
                instance = await workflow_engine.start_workflow("order", data)
                return {"instance_id": str(instance.id), "status": instance.status}
    """

    __slots__ = ("_config", "_engine", "_registry")

    def __init__(self, config: WorkflowPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or WorkflowPluginConfig()
        self._registry: WorkflowRegistry | None = None
        self._engine: LocalExecutionEngine | None = None

    @property
    def registry(self) -> WorkflowRegistry:
        """Get the workflow registry.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._registry is None:
            msg = "WorkflowPlugin has not been initialized. Access registry after app startup."
            raise RuntimeError(msg)
        return self._registry

    @property
    def engine(self) -> LocalExecutionEngine:
        """Get the execution engine.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._engine is None:
            msg = "WorkflowPlugin has not been initialized. Access engine after app startup."
            raise RuntimeError(msg)
        return self._engine

    async def _on_startup(self) -> None:
        engine = self.engine
        if self._config.configure_logging:
            configure_logging(engine.config.log_level, json_logs=engine.config.json_logs)
        if self._config.start_schedules:
            await engine.start_schedules()

    async def _on_shutdown(self) -> None:
        await self.engine.shutdown()

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates or uses the provided WorkflowRegistry
        2. Creates or uses the provided engine
        3. Registers the configured definitions
        4. Adds dependency providers and lifecycle hooks to the app config
        5. Optionally registers REST API controllers if enable_api=True

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.

        Raises:
            WorkflowValidationError: If a configured definition is invalid.
        """
        if self._config.engine is not None:
            self._engine = self._config.engine
            self._registry = self._config.registry or self._engine.registry
        else:
            self._registry = self._config.registry or WorkflowRegistry()
            self._engine = LocalExecutionEngine(registry=self._registry, config=self._config.engine_config)

        for definition in self._config.definitions:
            self._registry.register(definition)

        def provide_registry() -> WorkflowRegistry:
            return self._registry  # type: ignore[return-value]

        def provide_engine() -> LocalExecutionEngine:
            return self._engine  # type: ignore[return-value]

        app_config.dependencies[self._config.dependency_key_registry] = Provide(
            provide_registry,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_engine] = Provide(
            provide_engine,
            sync_to_thread=False,
        )

        app_config.on_startup.append(self._on_startup)
        app_config.on_shutdown.append(self._on_shutdown)

        if self._config.enable_api:
            from litestar import Router

            from swflow.web.controllers import (
                EventController,
                WorkflowDefinitionController,
                WorkflowInstanceController,
            )

            workflow_router = Router(
                path=self._config.api_path_prefix,
                route_handlers=[
                    WorkflowDefinitionController,
                    WorkflowInstanceController,
                    EventController,
                ],
                guards=self._config.api_guards,
                tags=self._config.api_tags,
                include_in_schema=self._config.include_api_in_schema,
            )
            app_config.route_handlers.append(workflow_router)

        return app_config
