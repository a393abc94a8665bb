"""Task definitions.

Tasks form a closed tagged union: one frozen dataclass per
:class:`~swflow.core.types.TaskKind`, all sharing the data-flow fields of
:class:`TaskBase`. The interpreter dispatches over the union with an
exhaustive ``match``.

DSL keys that collide with Python keywords carry a trailing underscore
(``from_``, ``as_``, ``if_``, ``try_``, ``in_``, ``while_``, ``with_``,
``await_``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum, auto
from typing import Any, ClassVar, TypeAlias

from swflow.core.types import ListenMode, TaskKind

__all__ = [
    "Backoff",
    "CallTask",
    "CatchClause",
    "Correlation",
    "DoTask",
    "EmitTask",
    "ErrorSpec",
    "EventFilter",
    "ExportSpec",
    "ForTask",
    "ForkTask",
    "InputSpec",
    "ListenTask",
    "OutputSpec",
    "RaiseTask",
    "RetryPolicy",
    "RunTask",
    "SetTask",
    "SwitchCase",
    "SwitchTask",
    "Task",
    "TaskBase",
    "Timeout",
    "TryTask",
    "WaitTask",
]


@dataclass(frozen=True)
class InputSpec:
    """Validate-then-transform step applied to raw input."""

    schema: dict[str, Any] | None = None
    from_: Any = None


@dataclass(frozen=True)
class OutputSpec:
    """Transform-then-validate step applied to raw output."""

    as_: Any = None
    schema: dict[str, Any] | None = None


@dataclass(frozen=True)
class ExportSpec:
    """Computes the replacement ``$context`` from the transformed output."""

    as_: Any = None
    schema: dict[str, Any] | None = None


@dataclass(frozen=True)
class Timeout:
    """A task or workflow deadline.

    Attributes:
        after: How long the guarded operation may take.
        then: Flow directive a ``listen`` task follows when the deadline
            fires. Without it the deadline raises a ``timeout`` error.
    """

    after: timedelta
    then: str | None = None


class Backoff(StrEnum):
    """Growth of the delay between retry attempts."""

    CONSTANT = auto()
    LINEAR = auto()
    EXPONENTIAL = auto()


@dataclass(frozen=True)
class RetryPolicy:
    """When and how often a ``try`` block is re-executed.

    Attributes:
        delay: Delay before the first retry.
        backoff: How the delay grows with each failure.
        multiplier: Growth factor of exponential backoff.
        max_delay: Upper bound of any single delay.
        max_attempts: Total executions allowed, the first one included.
        max_duration: Retrying stops once this much time has elapsed since
            the first attempt started.
        jitter: Random ``(low, high)`` extra delay added to each wait.
        when: Retry only when this expression over the error is truthy.
        except_when: Never retry when this expression over the error is truthy.
    """

    delay: timedelta = timedelta(0)
    backoff: Backoff = Backoff.CONSTANT
    multiplier: float = 2.0
    max_delay: timedelta | None = None
    max_attempts: int | None = None
    max_duration: timedelta | None = None
    jitter: tuple[timedelta, timedelta] | None = None
    when: str | None = None
    except_when: str | None = None


@dataclass(frozen=True)
class ErrorSpec:
    """Declaration of an error a ``raise`` task produces.

    ``title`` and ``detail`` may contain runtime expressions.
    """

    type: str
    status: int
    title: str | None = None
    detail: str | None = None


@dataclass(frozen=True, kw_only=True)
class TaskBase:
    """Fields shared by every task kind."""

    kind: ClassVar[TaskKind]

    name: str
    input: InputSpec | None = None
    output: OutputSpec | None = None
    export: ExportSpec | None = None
    then: str | None = None
    if_: str | None = None
    timeout: Timeout | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True, kw_only=True)
class SetTask(TaskBase):
    kind: ClassVar[TaskKind] = TaskKind.SET

    set: Any


@dataclass(frozen=True, kw_only=True)
class CallTask(TaskBase):
    """Invoke a named action (``http``, ``grpc`` or a registered function).

    ``with_`` holds the call arguments. When it is absent the executor
    receives the transformed task input instead.
    """

    kind: ClassVar[TaskKind] = TaskKind.CALL

    call: str
    with_: Any = None


@dataclass(frozen=True, kw_only=True)
class RunTask(TaskBase):
    """Run a process of ``run_kind`` (``shell``, ``script``, ``container`` or ``workflow``)."""

    kind: ClassVar[TaskKind] = TaskKind.RUN

    run_kind: str
    config: dict[str, Any] = field(default_factory=dict)
    await_: bool = True


@dataclass(frozen=True)
class SwitchCase:
    name: str
    when: str | None = None
    then: str | None = None


@dataclass(frozen=True, kw_only=True)
class SwitchTask(TaskBase):
    kind: ClassVar[TaskKind] = TaskKind.SWITCH

    cases: tuple[SwitchCase, ...]


@dataclass(frozen=True, kw_only=True)
class ForTask(TaskBase):
    kind: ClassVar[TaskKind] = TaskKind.FOR

    in_: str
    each: str = "item"
    at: str = "index"
    while_: str | None = None
    do: tuple[Task, ...] = ()


@dataclass(frozen=True, kw_only=True)
class ForkTask(TaskBase):
    kind: ClassVar[TaskKind] = TaskKind.FORK

    branches: tuple[Task, ...]
    compete: bool = False


@dataclass(frozen=True)
class CatchClause:
    """One ``catch`` entry of a ``try`` task.

    Attributes:
        errors: Equality filter over ``type``, ``status``, ``instance``,
            ``title`` and ``detail`` of the raised error.
        as_: Variable name the caught error is bound to.
        when: Only catch when this expression is truthy.
        except_when: Never catch when this expression is truthy.
        retry: Inline policy, or the name of a ``use.retries`` entry.
        do: Handler tasks. ``None`` swallows the error and outputs the
            ``try`` task's input.
        segments: Location of the clause below its ``try`` task: ``catch``
            for a single mapping, ``catch/<index>`` for a list entry.
    """

    errors: dict[str, Any] = field(default_factory=dict)
    as_: str = "error"
    when: str | None = None
    except_when: str | None = None
    retry: RetryPolicy | str | None = None
    do: tuple[Task, ...] | None = None
    segments: tuple[str | int, ...] = ("catch",)

    @property
    def path(self) -> str:
        return "/".join(str(segment) for segment in self.segments)


@dataclass(frozen=True, kw_only=True)
class TryTask(TaskBase):
    kind: ClassVar[TaskKind] = TaskKind.TRY

    try_: tuple[Task, ...]
    catch: tuple[CatchClause, ...] = ()


@dataclass(frozen=True, kw_only=True)
class RaiseTask(TaskBase):
    """Raise an inline error, or the ``use.errors`` entry named by ``error``."""

    kind: ClassVar[TaskKind] = TaskKind.RAISE

    error: ErrorSpec | str


@dataclass(frozen=True, kw_only=True)
class WaitTask(TaskBase):
    kind: ClassVar[TaskKind] = TaskKind.WAIT

    duration: timedelta


@dataclass(frozen=True)
class Correlation:
    """Correlation key of an event filter.

    ``from_`` is evaluated against the event. ``expect`` is evaluated against
    the listen task's input when the listener registers.
    """

    from_: str
    expect: Any = None


@dataclass(frozen=True)
class EventFilter:
    with_: dict[str, Any] = field(default_factory=dict)
    correlate: dict[str, Correlation] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ListenTask(TaskBase):
    """Suspend until events matching ``filters`` arrive.

    ``read`` selects the output: ``data`` yields the event payload,
    ``envelope`` the whole event.
    """

    kind: ClassVar[TaskKind] = TaskKind.LISTEN

    mode: ListenMode
    filters: tuple[EventFilter, ...]
    read: str = "data"


@dataclass(frozen=True, kw_only=True)
class EmitTask(TaskBase):
    kind: ClassVar[TaskKind] = TaskKind.EMIT

    event: dict[str, Any]


@dataclass(frozen=True, kw_only=True)
class DoTask(TaskBase):
    kind: ClassVar[TaskKind] = TaskKind.DO

    do: tuple[Task, ...]


Task: TypeAlias = (
    SetTask
    | CallTask
    | RunTask
    | SwitchTask
    | ForTask
    | ForkTask
    | TryTask
    | RaiseTask
    | WaitTask
    | ListenTask
    | EmitTask
    | DoTask
)
"""The closed union of task kinds."""
