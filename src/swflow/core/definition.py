"""Workflow definition structures.

This module provides :class:`WorkflowDefinition`, the immutable, versioned
description of a workflow, together with the structural validation that
runs before a definition is accepted by a registry.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import yaml

from swflow.core.dsl import (
    parse_error_spec,
    parse_input,
    parse_listen_to,
    parse_output,
    parse_retry,
    parse_task_list,
    parse_timeout,
)
from swflow.core.durations import parse_duration
from swflow.core.tasks import (
    DoTask,
    ErrorSpec,
    EventFilter,
    ForkTask,
    ForTask,
    InputSpec,
    ListenTask,
    OutputSpec,
    RaiseTask,
    RetryPolicy,
    SwitchTask,
    Task,
    Timeout,
    TryTask,
)
from swflow.core.types import FlowDirective, ListenMode
from swflow.exceptions import WorkflowValidationError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import timedelta

__all__ = ["Schedule", "UseSpec", "WorkflowDefinition", "iter_task_lists"]

DEFAULT_NAMESPACE = "default"


@dataclass(frozen=True)
class UseSpec:
    """Reusable components a definition declares under ``use``.

    Attributes:
        errors: Named errors ``raise`` tasks may reference.
        retries: Named retry policies ``catch`` clauses may reference.
        secrets: Names of the engine secrets visible as ``$secrets``.
    """

    errors: dict[str, ErrorSpec] = field(default_factory=dict)
    retries: dict[str, RetryPolicy] = field(default_factory=dict)
    secrets: tuple[str, ...] = ()


@dataclass(frozen=True)
class Schedule:
    """Automatic start triggers.

    Attributes:
        every: Start a new instance at this fixed interval.
        after: Start a new instance this long after the previous one ends.
        cron: Cron expression. Accepted but not run by the local engine.
        on_mode: How many ``on_filters`` an event set must satisfy.
        on_filters: Start an instance whenever published events match.
    """

    every: timedelta | None = None
    after: timedelta | None = None
    cron: str | None = None
    on_mode: ListenMode | None = None
    on_filters: tuple[EventFilter, ...] = ()


def iter_task_lists(
    tasks: tuple[Task, ...],
    path: str = "/do",
    *,
    sequential: bool = True,
) -> Iterator[tuple[str, tuple[Task, ...], bool]]:
    """Yield every task list of a tree with its pointer.

    The third element tells whether ``then`` jumps are meaningful in the list
    (fork branches run concurrently, so they are not).
    """
    yield path, tasks, sequential
    for index, task in enumerate(tasks):
        task_path = f"{path}/{index}/{task.name}"
        match task:
            case DoTask() | ForTask():
                yield from iter_task_lists(task.do, f"{task_path}/do")
            case ForkTask():
                yield from iter_task_lists(task.branches, f"{task_path}/fork/branches", sequential=False)
            case TryTask():
                yield from iter_task_lists(task.try_, f"{task_path}/try")
                for clause in task.catch:
                    if clause.do is not None:
                        yield from iter_task_lists(clause.do, f"{task_path}/{clause.path}/do")


@dataclass(frozen=True)
class WorkflowDefinition:
    """Immutable, versioned workflow definition.

    Identity is ``(namespace, name, version)``. Build instances with
    :meth:`from_dict`, :meth:`from_json` or :meth:`from_yaml`.

    Attributes:
        namespace: Namespace of the workflow.
        name: Workflow name, unique within its namespace.
        version: Semantic version string.
        do: Top-level task list.
        input: Workflow input schema and ``from`` transform.
        output: Workflow output ``as`` transform and schema.
        use: Reusable errors, retry policies and secret names.
        timeout: Instance-level deadline.
        schedule: Automatic start triggers.
        title: Human-readable title.
        summary: Human-readable summary.
        document: The source document the definition was parsed from.

    Example:
        >>> definition = WorkflowDefinition.from_dict(
        ...     {
        ...         "document": {"dsl": "1.0.0", "namespace": "demo", "name": "hello", "version": "1.0.0"},
        ...         "do": [{"greet": {"set": {"message": "hello"}}}],
        ...     }
        ... )
        >>> definition.identity
        'demo/hello:1.0.0'
    """

    namespace: str
    name: str
    version: str
    do: tuple[Task, ...]
    input: InputSpec | None = None
    output: OutputSpec | None = None
    use: UseSpec = field(default_factory=UseSpec)
    timeout: Timeout | None = None
    schedule: Schedule | None = None
    title: str | None = None
    summary: str | None = None
    document: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def identity(self) -> str:
        return f"{self.namespace}/{self.name}:{self.version}"

    @property
    def ref(self) -> dict[str, str]:
        return {"namespace": self.namespace, "name": self.name, "version": self.version}

    @classmethod
    def from_dict(cls, document: dict[str, Any]) -> WorkflowDefinition:
        """Parse a workflow document.

        Args:
            document: Mapping with ``document``, ``do`` and the optional
                ``input``, ``output``, ``use``, ``timeout`` and ``schedule``
                sections.

        Returns:
            The parsed definition.

        Raises:
            WorkflowValidationError: If the document is malformed.
        """
        if not isinstance(document, dict):
            raise WorkflowValidationError(["workflow document must be a mapping"])
        header = document.get("document") or {}
        missing = [key for key in ("name", "version") if not header.get(key)]
        if missing:
            raise WorkflowValidationError([f"/document: missing {', '.join(missing)}"])
        if "do" not in document:
            raise WorkflowValidationError(["/do: workflow has no tasks"])

        use = document.get("use") or {}
        use_spec = UseSpec(
            errors={
                name: parse_error_spec(raw, f"/use/errors/{name}") for name, raw in (use.get("errors") or {}).items()
            },
            retries={
                name: parse_retry(raw, f"/use/retries/{name}") for name, raw in (use.get("retries") or {}).items()
            },
            secrets=tuple(use.get("secrets") or ()),
        )

        return cls(
            namespace=str(header.get("namespace") or DEFAULT_NAMESPACE),
            name=str(header["name"]),
            version=str(header["version"]),
            do=parse_task_list(document["do"], "/do"),
            input=parse_input(document.get("input"), "/input"),
            output=parse_output(document.get("output"), "/output"),
            use=use_spec,
            timeout=parse_timeout(document.get("timeout"), "/timeout"),
            schedule=_parse_schedule(document.get("schedule")),
            title=header.get("title"),
            summary=header.get("summary"),
            document=document,
        )

    @classmethod
    def from_json(cls, text: str) -> WorkflowDefinition:
        return cls.from_dict(json.loads(text))

    @classmethod
    def from_yaml(cls, text: str) -> WorkflowDefinition:
        return cls.from_dict(yaml.safe_load(text))

    def iter_schemas(self) -> Iterator[tuple[str, dict[str, Any]]]:
        """Yield ``(pointer, schema)`` for every JSON Schema the definition embeds."""
        for path, spec in (("/input", self.input), ("/output", self.output)):
            if spec is not None and spec.schema is not None:
                yield f"{path}/schema", spec.schema
        for path, tasks, _ in iter_task_lists(self.do):
            for index, task in enumerate(tasks):
                task_path = f"{path}/{index}/{task.name}"
                for key, spec in (("input", task.input), ("output", task.output), ("export", task.export)):
                    if spec is not None and spec.schema is not None:
                        yield f"{task_path}/{key}/schema", spec.schema

    def validate(self) -> list[str]:  # noqa: C901
        """Check the definition for structural defects.

        Checks unique task names per list, resolvable ``then`` targets,
        mandatory switch defaults, known ``use`` references and non-empty
        fork branches.

        Returns:
            List of problems found. Empty if the definition is valid.
        """
        errors: list[str] = []
        directives = {directive.value for directive in FlowDirective}

        for path, tasks, sequential in iter_task_lists(self.do):
            names = [task.name for task in tasks]
            duplicates = sorted({name for name in names if names.count(name) > 1})
            errors.extend(f"{path}: duplicate task name '{name}'" for name in duplicates)

            def check_target(target: str | None, where: str, names: list[str] = names, sequential: bool = sequential) -> None:
                if target is None or target in directives:
                    return
                if not sequential:
                    errors.append(f"{where}: fork branches cannot jump to '{target}'")
                elif target not in names:
                    errors.append(f"{where}: 'then' references unknown task '{target}'")

            for index, task in enumerate(tasks):
                task_path = f"{path}/{index}/{task.name}"
                check_target(task.then, task_path)
                match task:
                    case SwitchTask():
                        for case in task.cases:
                            check_target(case.then, f"{task_path}/switch/{case.name}")
                        if not any(case.when is None for case in task.cases):
                            errors.append(f"{task_path}: switch has no default case")
                    case ListenTask() if task.timeout is not None:
                        check_target(task.timeout.then, f"{task_path}/timeout")
                    case ForkTask() if not task.branches:
                        errors.append(f"{task_path}: fork has no branches")
                    case RaiseTask() if isinstance(task.error, str) and task.error not in self.use.errors:
                        errors.append(f"{task_path}: raise references unknown error '{task.error}'")
                    case TryTask():
                        if not task.catch:
                            errors.append(f"{task_path}: try has no catch clause")
                        for clause in task.catch:
                            if isinstance(clause.retry, str) and clause.retry not in self.use.retries:
                                errors.append(
                                    f"{task_path}/{clause.path}: retry references unknown policy '{clause.retry}'"
                                )

        if self.schedule is not None and self.schedule.every is not None and self.schedule.after is not None:
            errors.append("/schedule: 'every' and 'after' are mutually exclusive")

        return errors


def _parse_schedule(value: Any) -> Schedule | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise WorkflowValidationError(["/schedule: must be a mapping"])
    try:
        every = parse_duration(value["every"]) if value.get("every") is not None else None
        after = parse_duration(value["after"]) if value.get("after") is not None else None
    except ValueError as e:
        raise WorkflowValidationError([f"/schedule: {e}"]) from e
    on_mode, on_filters = (None, ())
    if value.get("on") is not None:
        on_mode, on_filters = parse_listen_to(value["on"], "/schedule/on")
    return Schedule(every=every, after=after, cron=value.get("cron"), on_mode=on_mode, on_filters=on_filters)
