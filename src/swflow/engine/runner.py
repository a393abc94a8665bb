"""Task interpreter.

:class:`TaskRunner` walks the task tree of one instance. Every task passes
through the same pipeline (input, ``if`` guard, execution, output, export)
and kind-specific execution is an exhaustive ``match`` over the task union.

The main frame checkpoints its progress in the instance's node states, keyed
by position, so a restarted engine resumes at the task that was running
instead of replaying the ones that completed. Fork branches run in private
frames that do not checkpoint.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TypeAlias, assert_never
from uuid import UUID

import structlog

from swflow.core.durations import format_duration
from swflow.core.errors import ErrorType, WorkflowError, WorkflowException, normalize_error_type
from swflow.core.events import CloudEvent, TaskCompleted, TaskFaulted, TaskRetried, TaskSkipped, TaskStarted
from swflow.core.position import NodePosition
from swflow.core.tasks import (
    CallTask,
    DoTask,
    EmitTask,
    ErrorSpec,
    ForkTask,
    ForTask,
    ListenTask,
    RaiseTask,
    RunTask,
    SetTask,
    SwitchTask,
    TryTask,
    WaitTask,
)
from swflow.core.types import FlowDirective, ListenMode, WorkflowStatus
from swflow.engine.dataflow import ExecutionFrame
from swflow.engine.retry import RetryEngine
from swflow.runtime.actions import ActionConfig, run_action

if TYPE_CHECKING:
    from collections.abc import Awaitable, Sequence

    from swflow.core.definition import WorkflowDefinition
    from swflow.core.tasks import Task
    from swflow.engine.instance import WorkflowStateMachine
    from swflow.engine.local import LocalExecutionEngine

__all__ = ["Frame", "TaskRunner"]

logger = structlog.get_logger(__name__)

ROOT = NodePosition.root()
_Step: TypeAlias = tuple[Any, str | None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Frame:
    """Execution frame of the main task list or of one fork branch.

    Attributes:
        context: The frame's ``$context``.
        branch: Inside a fork branch. Context writes stay private and no
            checkpoints are written.
    """

    context: dict[str, Any]
    branch: bool = False


class TaskRunner:
    """Runs one instance of a definition to a terminal status.

    Args:
        engine: Supplies the data flow processor, resolver, correlation store,
            action registry and configuration.
        definition: The definition the instance was started from.
        machine: State machine of the instance.
    """

    def __init__(
        self,
        engine: LocalExecutionEngine,
        definition: WorkflowDefinition,
        machine: WorkflowStateMachine,
    ) -> None:
        self.engine = engine
        self.definition = definition
        self.machine = machine
        self.instance = machine.instance
        self.config = engine.config
        self.processor = engine.processor
        self.resolver = engine.resolver
        self.retries = RetryEngine(engine.processor, definition.use, engine.config.rng)

    @property
    def _log(self) -> Any:
        return logger.bind(instance_id=str(self.instance.id), workflow=self.definition.identity)

    async def run(self) -> None:
        """Drive the instance from its current status to a terminal one.

        A ``created`` instance starts from the first task. A ``running`` or
        ``suspended`` instance (loaded after a restart) resumes from its
        checkpoints.
        """
        if self.instance.status is WorkflowStatus.CREATED:
            await self.machine.start()
        else:
            if self.instance.status is WorkflowStatus.SUSPENDED:
                await self.machine.resume()
            await self.machine.reset_correlations()
            self._log.info("workflow_resuming", position=self.instance.position)

        frame = Frame(context=self.instance.context)
        timeout = self.definition.timeout.after if self.definition.timeout else self.config.workflow_timeout
        root = str(ROOT)
        try:
            async with asyncio.timeout(timeout.total_seconds() if timeout is not None else None):
                bindings = self._bindings(frame, self.instance.input)
                spec = self.definition.input
                value = self.processor.process_input(
                    self.instance.input,
                    spec.schema if spec else None,
                    spec.from_ if spec else None,
                    bindings,
                    root,
                )
                value, _ = await self._run_list(self.definition.do, ROOT.child("do"), value, frame, {})
                spec = self.definition.output
                output = self.processor.process_output(
                    value,
                    spec.as_ if spec else None,
                    spec.schema if spec else None,
                    self._bindings(frame, self.instance.input),
                    root,
                )
        except WorkflowException as e:
            await self.machine.fault(e.error)
            return
        except TimeoutError:
            await self.machine.fault(
                WorkflowError.of(
                    ErrorType.TIMEOUT,
                    f"Workflow timed out after {format_duration(timeout)}",
                    instance=self.instance.position or root,
                )
            )
            return

        await self.machine.complete(output)

    def _bindings(
        self,
        frame: Frame,
        input_: Any,
        variables: dict[str, Any] | None = None,
        task: Task | None = None,
        position: str | None = None,
    ) -> dict[str, Any]:
        bindings = {
            "context": frame.context,
            "input": input_,
            "secrets": self.config.secrets_for(self.definition.use.secrets),
            "workflow": {
                "id": str(self.instance.id),
                "definition": self.definition.document,
                "input": self.instance.input,
                "startedAt": self.instance.started_at.isoformat() if self.instance.started_at else None,
            },
            "runtime": {"name": self.config.runtime_name, "version": self.config.runtime_version},
        }
        if task is not None:
            bindings["task"] = {"name": task.name, "reference": position}
        bindings.update(variables or {})
        return bindings

    def _state(self, frame: Frame, key: str) -> dict[str, Any] | None:
        return None if frame.branch else self.machine.node_state(key)

    async def _checkpoint(self, frame: Frame, key: str, state: dict[str, Any], position: str | None = None) -> None:
        if not frame.branch:
            await self.machine.checkpoint(key, state, position)

    async def _clear(self, frame: Frame, key: str) -> None:
        if not frame.branch:
            await self.machine.clear_node_states(key)

    async def _replace_context(self, frame: Frame, context: dict[str, Any]) -> None:
        frame.context = context
        if not frame.branch:
            await self.machine.replace_context(context)

    async def _run_list(
        self,
        tasks: Sequence[Task],
        base: NodePosition,
        value: Any,
        frame: Frame,
        variables: dict[str, Any],
    ) -> tuple[Any, bool]:
        """Run a task list, following flow directives.

        Returns:
            The output of the last task that ran, and whether an ``end``
            directive was reached.
        """
        key = str(base)
        index: int | None = 0
        state = self._state(frame, key)
        if state is not None:
            index, value = state["index"], state["input"]

        while index is not None:
            task = tasks[index]
            position = base.child(index, task.name)
            await self._checkpoint(frame, key, {"index": index, "input": value}, str(position))
            value, directive = await self._run_task(task, position, value, frame, variables)
            transition = self.resolver.next(tasks, index, directive, str(position))
            if transition.end:
                await self._clear(frame, key)
                return value, True
            index = transition.index

        await self._clear(frame, key)
        return value, False

    async def _run_task(
        self,
        task: Task,
        position: NodePosition,
        raw: Any,
        frame: Frame,
        variables: dict[str, Any],
    ) -> _Step:
        """Run one task through the data flow pipeline.

        Returns:
            The transformed output and the flow directive to follow.
        """
        pointer = str(position)
        await self.machine.emit(
            TaskStarted(
                instance_id=self.instance.id,
                timestamp=_now(),
                task_name=task.name,
                task_kind=task.kind.value,
                position=pointer,
            )
        )
        step = ExecutionFrame(raw_input=raw)
        try:
            bindings = self._bindings(frame, raw, variables, task, pointer)
            spec = task.input
            step.transformed_input = self.processor.process_input(
                raw, spec.schema if spec else None, spec.from_ if spec else None, bindings, pointer
            )
            bindings["input"] = step.transformed_input

            if task.if_ is not None and not self.processor.is_truthy(
                task.if_, step.transformed_input, bindings, pointer
            ):
                self._log.debug("task_skipped", task=task.name, position=pointer)
                await self.machine.emit(
                    TaskSkipped(instance_id=self.instance.id, timestamp=_now(), task_name=task.name, position=pointer)
                )
                return raw, None

            step.raw_output, directive = await self._execute(
                task, position, step.transformed_input, bindings, frame, variables
            )

            spec = task.output
            step.transformed_output = self.processor.process_output(
                step.raw_output, spec.as_ if spec else None, spec.schema if spec else None, bindings, pointer
            )
            if task.export is not None:
                step.export_result = self.processor.process_export(
                    step.transformed_output, frame.context, task.export.as_, task.export.schema, bindings, pointer
                )
                await self._replace_context(frame, step.export_result)
        except WorkflowException as e:
            if e.error.instance is not None and e.error.instance != pointer:
                raise
            error = e.error.at(pointer)
            await self.machine.emit(
                TaskFaulted(
                    instance_id=self.instance.id,
                    timestamp=_now(),
                    task_name=task.name,
                    position=pointer,
                    error=error.to_dict(),
                )
            )
            if error is e.error:
                raise
            raise WorkflowException(error) from e

        await self.machine.emit(
            TaskCompleted(
                instance_id=self.instance.id,
                timestamp=_now(),
                task_name=task.name,
                position=pointer,
                output=step.transformed_output,
            )
        )
        return step.transformed_output, directive if directive is not None else task.then

    async def _execute(
        self,
        task: Task,
        position: NodePosition,
        transformed: Any,
        bindings: dict[str, Any],
        frame: Frame,
        variables: dict[str, Any],
    ) -> _Step:
        pointer = str(position)
        match task:
            case SetTask():
                return self.processor.render(task.set, transformed, bindings, pointer), None
            case CallTask():
                return await self._call(task, pointer, transformed, bindings), None
            case RunTask():
                return await self._run(task, pointer, transformed, bindings), None
            case SwitchTask():
                case = self.resolver.resolve_switch(task, transformed, bindings, pointer)
                self._log.debug("switch_matched", task=task.name, case=case.name, position=pointer)
                return transformed, self.resolver.directive_for(case, task)
            case ForTask():
                return await self._guard(task, pointer, self._for(task, position, transformed, bindings, frame, variables))
            case ForkTask():
                return await self._fork(task, position, transformed, frame, variables)
            case TryTask():
                return await self._guard(task, pointer, self._try(task, position, transformed, bindings, frame, variables))
            case RaiseTask():
                raise WorkflowException(self._raise(task, pointer, transformed, bindings))
            case WaitTask():
                return await self._wait(task, pointer, transformed, frame), None
            case ListenTask():
                return await self._listen(task, pointer, transformed, bindings, frame)
            case EmitTask():
                return await self._emit(task, pointer, transformed, bindings), None
            case DoTask():
                output, ended = await self._guard(
                    task, pointer, self._run_list(task.do, position.child("do"), transformed, frame, variables)
                )
                return output, FlowDirective.END.value if ended else None
            case _:
                assert_never(task)

    async def _guard(self, task: Task, pointer: str, awaitable: Awaitable[Any]) -> Any:
        """Apply the task's ``timeout.after``, raising a ``timeout`` error when it fires."""
        if task.timeout is None:
            return await awaitable
        try:
            async with asyncio.timeout(task.timeout.after.total_seconds()):
                return await awaitable
        except TimeoutError as e:
            raise WorkflowException.of(
                ErrorType.TIMEOUT,
                f"Task '{task.name}' timed out after {format_duration(task.timeout.after)}",
                instance=pointer,
            ) from e

    async def _call(self, task: CallTask, pointer: str, transformed: Any, bindings: dict[str, Any]) -> Any:
        executor = self.engine.actions.get(task.call, pointer)
        arguments = transformed if task.with_ is None else self.processor.render(task.with_, transformed, bindings, pointer)
        config = ActionConfig(
            name=task.call, arguments=arguments, task_name=task.name, position=pointer, instance_id=self.instance.id
        )
        return await self._guard(task, pointer, run_action(executor, arguments, config))

    async def _run(self, task: RunTask, pointer: str, transformed: Any, bindings: dict[str, Any]) -> Any:
        executor = self.engine.actions.get(task.run_kind, pointer)
        config = ActionConfig(
            name=task.run_kind,
            arguments=self.processor.render(task.config, transformed, bindings, pointer),
            task_name=task.name,
            position=pointer,
            instance_id=self.instance.id,
        )
        if not task.await_:
            self.engine.spawn(run_action(executor, transformed, config), f"{self.instance.id}{pointer}")
            return transformed
        return await self._guard(task, pointer, run_action(executor, transformed, config))

    async def _for(
        self,
        task: ForTask,
        position: NodePosition,
        transformed: Any,
        bindings: dict[str, Any],
        frame: Frame,
        variables: dict[str, Any],
    ) -> _Step:
        pointer = str(position)
        items = self.processor.evaluate(task.in_, transformed, bindings, pointer)
        if items is None:
            items = []
        if not isinstance(items, list):
            raise WorkflowException.of(
                ErrorType.EXPRESSION,
                f"'for.in' must evaluate to an array, got {type(items).__name__}",
                instance=pointer,
            )

        state = self._state(frame, pointer)
        outputs: list[Any] = list(state["outputs"]) if state else []
        ended = False
        for index in range(len(outputs), len(items)):
            scope = {**variables, task.each: items[index], task.at: index}
            if task.while_ is not None and not self.processor.is_truthy(
                task.while_, transformed, {**bindings, **scope}, pointer
            ):
                break
            output, ended = await self._run_list(task.do, position.child("do"), transformed, frame, scope)
            outputs.append(output)
            if ended:
                break
            await self._checkpoint(frame, pointer, {"outputs": outputs})

        await self._clear(frame, pointer)
        return outputs, FlowDirective.END.value if ended else None

    async def _fork(  # noqa: C901
        self,
        task: ForkTask,
        position: NodePosition,
        transformed: Any,
        frame: Frame,
        variables: dict[str, Any],
    ) -> _Step:
        """Run the branches concurrently and join them.

        Every branch starts from the same input snapshot with a private copy
        of the context. Branch exports are discarded at the join.
        """
        pointer = str(position)
        base = position.child("fork", "branches")
        state = self._state(frame, pointer)
        completed: dict[str, Any] = dict(state["completed"]) if state else {}

        def joined() -> dict[str, Any]:
            return {branch.name: completed[branch.name] for branch in task.branches if branch.name in completed}

        if task.compete and completed:
            winner = next(branch.name for branch in task.branches if branch.name in completed)
            await self._clear(frame, pointer)
            return completed[winner], None

        async def run_branch(index: int, branch: Task) -> Any:
            branch_frame = Frame(context=copy.deepcopy(frame.context), branch=True)
            async with self.machine.branch():
                output, _ = await self._run_task(
                    branch, base.child(index, branch.name), copy.deepcopy(transformed), branch_frame, variables
                )
            completed[branch.name] = output
            await self._checkpoint(frame, pointer, {"completed": dict(completed)})
            return output

        running = {
            branch.name: asyncio.create_task(run_branch(index, branch), name=f"{pointer}/{branch.name}")
            for index, branch in enumerate(task.branches)
            if branch.name not in completed
        }
        timeout = task.timeout.after.total_seconds() if task.timeout else None
        return_when = asyncio.FIRST_COMPLETED if task.compete else asyncio.FIRST_EXCEPTION
        try:
            with self.machine.forked():
                done, pending = await asyncio.wait(running.values(), timeout=timeout, return_when=return_when)
                for name, branch_task in running.items():
                    if branch_task in done and branch_task.exception() is not None:
                        self._log.info("fork_branch_faulted", task=task.name, branch=name, position=pointer)
                        raise branch_task.exception()

                if task.compete:
                    if not done:
                        raise WorkflowException.of(
                            ErrorType.TIMEOUT,
                            f"No branch of '{task.name}' finished within {format_duration(task.timeout.after)}",
                            instance=pointer,
                        )
                    winner = next(name for name, branch_task in running.items() if branch_task in done)
                    self._log.debug("fork_branch_won", task=task.name, branch=winner, position=pointer)
                    output = running[winner].result()
                elif pending:
                    self._log.info(
                        "fork_timed_out",
                        task=task.name,
                        position=pointer,
                        unfinished=[name for name, branch_task in running.items() if branch_task in pending],
                    )
                    output = joined()
                else:
                    output = joined()
        finally:
            unfinished = [branch_task for branch_task in running.values() if not branch_task.done()]
            for branch_task in unfinished:
                branch_task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)

        await self._clear(frame, pointer)
        return output, None

    async def _try(  # noqa: C901
        self,
        task: TryTask,
        position: NodePosition,
        transformed: Any,
        bindings: dict[str, Any],
        frame: Frame,
        variables: dict[str, Any],
    ) -> _Step:
        pointer = str(position)
        body = position.child("try")
        state = self._state(frame, pointer) or {}
        attempt = state.get("attempt", 1)
        started_at = datetime.fromisoformat(state["started_at"]) if "started_at" in state else _now()
        caught = state.get("caught")

        while caught is None:
            try:
                value, ended = await self._run_list(task.try_, body, transformed, frame, variables)
            except WorkflowException as e:
                error = e.error
                await self._clear(frame, str(body))
                found = self.retries.find_clause(task.catch, error, bindings, pointer)
                if found is None:
                    raise
                clause_index, clause = found
                policy = self.retries.policy_for(clause)
                if policy is not None and self.retries.should_retry(
                    policy, error, attempt, _now() - started_at, bindings, clause.as_, pointer
                ):
                    delay = self.retries.delay(policy, attempt)
                    attempt += 1
                    self._log.info(
                        "task_retrying",
                        task=task.name,
                        position=pointer,
                        attempt=attempt,
                        delay=delay.total_seconds(),
                        error_type=error.type,
                    )
                    await self.machine.emit(
                        TaskRetried(
                            instance_id=self.instance.id,
                            timestamp=_now(),
                            task_name=task.name,
                            position=pointer,
                            attempt=attempt,
                            delay_seconds=delay.total_seconds(),
                            error=error.to_dict(),
                        )
                    )
                    await self._checkpoint(frame, pointer, {"attempt": attempt, "started_at": started_at.isoformat()})
                    await self.config.sleep(delay.total_seconds())
                    continue

                caught = {"clause": clause_index, "error": error.to_dict()}
                await self._checkpoint(
                    frame, pointer, {"attempt": attempt, "started_at": started_at.isoformat(), "caught": caught}
                )
            else:
                await self._clear(frame, pointer)
                return value, FlowDirective.END.value if ended else None

        clause = task.catch[caught["clause"]]
        self._log.info("error_caught", task=task.name, position=pointer, error_type=caught["error"]["type"])
        if clause.do is None:
            await self._clear(frame, pointer)
            return transformed, None

        scope = {**variables, clause.as_: caught["error"]}
        value, ended = await self._run_list(
            clause.do, position.child(*clause.segments, "do"), transformed, frame, scope
        )
        await self._clear(frame, pointer)
        return value, FlowDirective.END.value if ended else None

    def _raise(self, task: RaiseTask, pointer: str, transformed: Any, bindings: dict[str, Any]) -> WorkflowError:
        spec = task.error if isinstance(task.error, ErrorSpec) else self.definition.use.errors[task.error]
        return WorkflowError(
            type=normalize_error_type(spec.type),
            status=spec.status,
            title=self.processor.render(spec.title, transformed, bindings, pointer),
            detail=self.processor.render(spec.detail, transformed, bindings, pointer),
            instance=pointer,
        )

    async def _wait(self, task: WaitTask, pointer: str, transformed: Any, frame: Frame) -> Any:
        state = self._state(frame, pointer)
        if state is not None:
            until = datetime.fromisoformat(state["until"])
        else:
            until = _now() + task.duration
            await self._checkpoint(frame, pointer, {"until": until.isoformat()})

        async with self.machine.waiting():
            await self.config.sleep(max(0.0, (until - _now()).total_seconds()))
        await self._clear(frame, pointer)
        return transformed

    async def _listen(
        self,
        task: ListenTask,
        pointer: str,
        transformed: Any,
        bindings: dict[str, Any],
        frame: Frame,
    ) -> _Step:
        correlations = self.engine.correlations
        state = self._state(frame, pointer)
        if state is not None:
            saved = state["correlation"]
            pending = correlations.register(
                self.instance.id,
                pointer,
                task.filters,
                task.mode,
                saved["expected"],
                datetime.fromisoformat(saved["deadline"]) if saved["deadline"] else None,
                correlation_id=UUID(saved["id"]),
                matched={int(index): CloudEvent.from_dict(event) for index, event in saved["matched"].items()},
            )
        else:
            expected = [
                {
                    key: self.processor.render(correlation.expect, transformed, bindings, pointer)
                    for key, correlation in flt.correlate.items()
                    if correlation.expect is not None
                }
                for flt in task.filters
            ]
            deadline = _now() + task.timeout.after if task.timeout else None
            pending = correlations.register(self.instance.id, pointer, task.filters, task.mode, expected, deadline)
            await self._checkpoint(frame, pointer, {"correlation": pending.to_dict()})

        await self.machine.add_correlation(pending.to_dict())
        try:
            async with self.machine.waiting():
                outcome = await correlations.wait(pending)
        finally:
            await self.machine.remove_correlation(str(pending.id))
        await self._clear(frame, pointer)

        if outcome.timed_out:
            if task.timeout is not None and task.timeout.then is not None:
                self._log.info("listen_timed_out", task=task.name, position=pointer, then=task.timeout.then)
                return transformed, task.timeout.then
            raise WorkflowException.of(
                ErrorType.TIMEOUT,
                f"Task '{task.name}' received no matching event within {format_duration(task.timeout.after)}",
                instance=pointer,
            )

        received = [event.to_dict() if task.read == "envelope" else event.data for event in outcome.events]
        return (received if task.mode is ListenMode.ALL else received[0]), None

    async def _emit(self, task: EmitTask, pointer: str, transformed: Any, bindings: dict[str, Any]) -> Any:
        attributes = self.processor.render(task.event, transformed, bindings, pointer)
        if not isinstance(attributes, dict) or not attributes.get("type"):
            raise WorkflowException.of(ErrorType.CONFIGURATION, "Emitted events require a 'type'", instance=pointer)
        event = CloudEvent.from_dict({"source": self.config.runtime_name, **attributes})
        self._log.debug("event_emitted", task=task.name, event_type=event.type, position=pointer)
        await self.engine.emit(event)
        return transformed
