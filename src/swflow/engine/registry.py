"""Workflow registry for managing workflow definitions.

This module provides a registry for storing, retrieving, and managing
workflow definitions with support for namespaces and semantic versions.
Definitions are append-only: a registered identity never changes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from swflow.core.definition import DEFAULT_NAMESPACE, WorkflowDefinition
from swflow.exceptions import WorkflowAlreadyRegisteredError, WorkflowNotFoundError, WorkflowValidationError
from swflow.runtime.schemas import JSONSchemaValidator

if TYPE_CHECKING:
    from swflow.core.protocols import SchemaValidator

__all__ = ["WorkflowRegistry", "version_key"]

logger = structlog.get_logger(__name__)


def version_key(version: str) -> tuple[tuple[int, ...], bool, tuple[tuple[int, int, str], ...]]:
    """Sort key ordering semantic versions.

    Pre-releases sort before their release (``1.0.0-rc.1 < 1.0.0``) and
    compare per dot-separated identifier: numeric identifiers numerically and
    before alphanumeric ones. Non-numeric core parts count as zero and build
    metadata is ignored.

    Example:
        >>> sorted(["1.10.0", "1.2.0", "1.2.0-rc.10", "1.2.0-rc.2"], key=version_key)
        ['1.2.0-rc.2', '1.2.0-rc.10', '1.2.0', '1.10.0']
    """
    core, _, prerelease = version.partition("+")[0].partition("-")
    parts = tuple(int(part) if part.isdigit() else 0 for part in core.split("."))
    identifiers = tuple(
        (0, int(identifier), "") if identifier.isdigit() else (1, 0, identifier)
        for identifier in prerelease.split(".")
        if prerelease
    )
    return parts, not prerelease, identifiers


class WorkflowRegistry:
    """Registry for storing and retrieving workflow definitions.

    The registry maintains a mapping of ``(namespace, name)`` to versions and
    their definitions, enabling workflow lookup and version management.

    Args:
        validator: Checks the JSON Schemas embedded in definitions.
    """

    def __init__(self, validator: SchemaValidator | None = None) -> None:
        self.validator = validator or JSONSchemaValidator()
        self._definitions: dict[tuple[str, str], dict[str, WorkflowDefinition]] = {}

    def validate(self, definition: WorkflowDefinition) -> list[str]:
        """Return every problem that prevents ``definition`` from being registered."""
        errors = definition.validate()
        for pointer, schema in definition.iter_schemas():
            errors.extend(f"{pointer}: {problem}" for problem in self.validator.check_schema(schema))
        return errors

    def register(self, definition: WorkflowDefinition | dict[str, Any]) -> WorkflowDefinition:
        """Validate and store a definition.

        Registering the same identity with an identical document is a no-op.

        Args:
            definition: The definition, or a workflow document to parse.

        Returns:
            The registered definition.

        Raises:
            WorkflowValidationError: If the definition has structural defects.
            WorkflowAlreadyRegisteredError: If the identity is taken by a
                different document.

        Example:
            >>> registry = WorkflowRegistry()
            >>> registry.register(WorkflowDefinition.from_yaml(text))
        """
        if not isinstance(definition, WorkflowDefinition):
            definition = WorkflowDefinition.from_dict(definition)

        errors = self.validate(definition)
        if errors:
            logger.warning("definition_rejected", workflow=definition.identity, errors=errors)
            raise WorkflowValidationError(errors)

        versions = self._definitions.setdefault((definition.namespace, definition.name), {})
        existing = versions.get(definition.version)
        if existing is not None:
            if existing.document != definition.document:
                raise WorkflowAlreadyRegisteredError(definition.identity)
            return existing

        versions[definition.version] = definition
        logger.info("definition_registered", workflow=definition.identity)
        return definition

    def get_definition(
        self,
        name: str,
        version: str | None = None,
        namespace: str | None = None,
    ) -> WorkflowDefinition:
        """Retrieve a workflow definition by name and optional version.

        Args:
            name: The workflow name.
            version: The workflow version. If None, returns the highest version.
            namespace: The namespace to search. Defaults to ``default``.

        Returns:
            The WorkflowDefinition for the requested workflow.

        Raises:
            WorkflowNotFoundError: If the workflow name or version is not found.

        Example:
            >>> definition = registry.get_definition("order")
            >>> definition_v1 = registry.get_definition("order", "1.0.0")
        """
        namespace = namespace or DEFAULT_NAMESPACE
        versions = self._definitions.get((namespace, name))
        if not versions:
            raise WorkflowNotFoundError(name, version, namespace)

        if version is None:
            version = max(versions, key=version_key)

        if version not in versions:
            raise WorkflowNotFoundError(name, version, namespace)

        return versions[version]

    def list_definitions(self, latest_only: bool = True) -> list[WorkflowDefinition]:
        """List all registered workflow definitions.

        Args:
            latest_only: If True, only return the highest version of each workflow.
                If False, return all versions.

        Returns:
            List of WorkflowDefinition objects.
        """
        definitions = []

        for versions in self._definitions.values():
            ordered = sorted(versions, key=version_key)
            if latest_only:
                definitions.append(versions[ordered[-1]])
            else:
                definitions.extend(versions[version] for version in ordered)

        return definitions

    def has_workflow(self, name: str, version: str | None = None, namespace: str | None = None) -> bool:
        versions = self._definitions.get((namespace or DEFAULT_NAMESPACE, name))
        if not versions:
            return False
        return version is None or version in versions

    def get_versions(self, name: str, namespace: str | None = None) -> list[str]:
        """Get all versions of a workflow, lowest first.

        Raises:
            WorkflowNotFoundError: If the workflow name is not found.
        """
        namespace = namespace or DEFAULT_NAMESPACE
        versions = self._definitions.get((namespace, name))
        if not versions:
            raise WorkflowNotFoundError(name, namespace=namespace)
        return sorted(versions, key=version_key)
