"""Integration tests for the local execution engine."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest
from conftest import make_document, wait_for_status

if TYPE_CHECKING:
    from uuid import UUID

    from conftest import RecordingEventBus, RecordingSleep

    from swflow.core.models import WorkflowInstanceData
    from swflow.engine.local import LocalExecutionEngine
    from swflow.engine.registry import WorkflowRegistry
    from swflow.runtime.actions import ActionRegistry


async def run_document(
    engine: LocalExecutionEngine, document: dict[str, Any], input_: Any = None, timeout: float = 2.0
) -> WorkflowInstanceData:
    """Register ``document``, start it and wait until it stops executing."""
    engine.registry.register(document)
    instance = await engine.start_workflow(document["document"]["name"], input_)
    return await engine.wait_for_completion(instance.id, timeout=timeout)


async def block(value: Any) -> Any:
    """Action that never finishes on its own."""
    await asyncio.Event().wait()
    return value


PAYMENT_LISTENER = {
    "awaitPayment": {
        "listen": {
            "to": {
                "one": {
                    "with": {"type": "payment.received"},
                    "correlate": {"orderId": {"from": ".data.orderId", "expect": "${ .orderId }"}},
                }
            }
        }
    }
}


@pytest.mark.integration
class TestDataFlow:
    """Tests for how data moves through a running workflow."""

    async def test_input_and_output_transforms(self, local_engine: LocalExecutionEngine) -> None:
        """Test workflow input.from and output.as wrap the task list."""
        from swflow.core.types import WorkflowStatus

        document = make_document(
            "greet",
            [{"hello": {"set": {"message": "${ \"Hello, \" + .name }"}}}],
            input={"from": ".user"},
            output={"as": ".message"},
        )

        instance = await run_document(local_engine, document, {"user": {"name": "Ada"}})

        assert instance.status is WorkflowStatus.COMPLETED
        assert instance.output == "Hello, Ada"

    async def test_input_from_reshapes_first_task_input(
        self, local_engine: LocalExecutionEngine, actions: ActionRegistry
    ) -> None:
        """Test the first task receives the workflow input after input.from."""
        received: list[Any] = []

        @actions.function("record")
        def record(value: Any) -> Any:
            received.append(value)
            return value

        document = make_document(
            "checkout",
            [{"first": {"call": "record"}}],
            input={"from": "{ userId: .user.id, orderDetails: .payload }"},
        )

        instance = await run_document(local_engine, document, {"user": {"id": "u1"}, "payload": {"a": 1}})

        assert received == [{"userId": "u1", "orderDetails": {"a": 1}}]
        assert instance.output == {"userId": "u1", "orderDetails": {"a": 1}}

    @pytest.mark.parametrize(
        ("items", "approved"),
        [([{"price": 80}, {"price": 40}], False), ([{"price": 10}], True)],
    )
    async def test_switch_routes_orders(
        self,
        local_engine: LocalExecutionEngine,
        sample_document: dict[str, Any],
        items: list[dict[str, Any]],
        approved: bool,
    ) -> None:
        """Test large orders go to review and end, small ones are approved."""
        instance = await run_document(local_engine, sample_document, {"orderId": "o-1", "items": items})

        assert instance.output == {"orderId": "o-1", "approved": approved}

    async def test_invalid_workflow_input(
        self, local_engine: LocalExecutionEngine, sample_document: dict[str, Any]
    ) -> None:
        """Test an input schema failure faults the instance at the root."""
        from swflow.core.errors import ErrorType
        from swflow.core.types import WorkflowStatus

        instance = await run_document(local_engine, sample_document, {"orderId": "o-1"})

        assert instance.status is WorkflowStatus.FAILED
        assert instance.error is not None
        assert instance.error.error_type is ErrorType.VALIDATION
        assert instance.error.instance == "/"

    async def test_export_updates_context(self, local_engine: LocalExecutionEngine) -> None:
        """Test exported values are visible to later tasks as $context."""
        document = make_document(
            "remember",
            [
                {"remember": {"set": {"x": 5}, "export": {"as": "$context + {x: .x}"}}},
                {"recall": {"set": {"fromContext": "${ $context.x }"}}},
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.context == {"x": 5}
        assert instance.output == {"fromContext": 5}

    async def test_skipped_task_passes_input_through(
        self, local_engine: LocalExecutionEngine, event_bus: RecordingEventBus
    ) -> None:
        """Test a falsy if guard skips the task and keeps its raw input."""
        document = make_document("maybe", [{"maybe": {"set": {"ran": True}, "if": ".enabled"}}])

        instance = await run_document(local_engine, document, {"enabled": False})

        assert instance.output == {"enabled": False}
        assert [event.position for event in event_bus.of_type("task.skipped")] == ["/do/0/maybe"]

    async def test_runtime_bindings(self, local_engine: LocalExecutionEngine) -> None:
        """Test $workflow, $task and $runtime describe the running task."""
        document = make_document(
            "describe",
            [
                {
                    "describe": {
                        "set": {
                            "id": "${ $workflow.id }",
                            "task": "${ $task.name }",
                            "runtime": "${ $runtime.name }",
                        }
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"id": str(instance.id), "task": "describe", "runtime": "swflow"}

    async def test_secrets_are_limited_to_declared_names(self, local_engine: LocalExecutionEngine) -> None:
        """Test $secrets only exposes what use.secrets lists."""
        document = make_document(
            "secretive",
            [{"read": {"set": {"key": "${ $secrets.apiKey }", "names": "${ $secrets | keys }"}}}],
            use={"secrets": ["apiKey"]},
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"key": "s3cr3t", "names": ["apiKey"]}

    async def test_lifecycle_events_in_order(
        self, local_engine: LocalExecutionEngine, event_bus: RecordingEventBus
    ) -> None:
        """Test every task is bracketed by started and completed events."""
        document = make_document("pair", [{"a": {"set": {"n": 1}}}, {"b": {"set": {"n": 2}}}])

        await run_document(local_engine, document)

        assert [event.event_type for event in event_bus.events] == [
            "workflow.started",
            "task.started",
            "task.completed",
            "task.started",
            "task.completed",
            "workflow.completed",
        ]


@pytest.mark.integration
class TestCallAndRun:
    """Tests for call and run tasks."""

    async def test_call_with_arguments(self, local_engine: LocalExecutionEngine) -> None:
        """Test with arguments are rendered and passed to the function."""
        document = make_document(
            "math",
            [{"twice": {"call": "double", "with": "${ .n }", "output": {"as": "{result: .}"}}}],
        )

        instance = await run_document(local_engine, document, {"n": 21})

        assert instance.output == {"result": 42}

    async def test_call_without_arguments_receives_input(self, local_engine: LocalExecutionEngine) -> None:
        """Test a call without with gets the transformed input."""
        document = make_document("echoing", [{"echo": {"call": "echo", "input": {"from": ".payload"}}}])

        instance = await run_document(local_engine, document, {"payload": [1, 2]})

        assert instance.output == [1, 2]

    async def test_unknown_action_is_configuration_error(self, local_engine: LocalExecutionEngine) -> None:
        """Test calling an unregistered function faults with a configuration error."""
        from swflow.core.errors import ErrorType
        from swflow.core.types import WorkflowStatus

        document = make_document("missing", [{"c": {"call": "nope"}}])

        instance = await run_document(local_engine, document)

        assert instance.status is WorkflowStatus.FAILED
        assert instance.error.error_type is ErrorType.CONFIGURATION
        assert instance.error.instance == "/do/0/c"

    async def test_action_exception_is_runtime_error(
        self, local_engine: LocalExecutionEngine, event_bus: RecordingEventBus
    ) -> None:
        """Test an exception raised by a function becomes a runtime error."""
        from swflow.core.errors import ErrorType

        document = make_document("failing", [{"boom": {"call": "fail", "with": "${ .n }"}}])

        instance = await run_document(local_engine, document, {"n": 3})

        assert instance.error.error_type is ErrorType.RUNTIME
        assert instance.error.detail == "cannot handle 3"
        assert event_bus.of_type("task.faulted")[0].position == "/do/0/boom"

    async def test_run_without_await(self, local_engine: LocalExecutionEngine, actions: ActionRegistry) -> None:
        """Test a fire-and-forget run returns its input and the action still runs."""
        from swflow.runtime.actions import ActionConfig, BaseAction

        received: list[Any] = []

        class ShellAction(BaseAction):
            async def execute(self, transformed_input: Any, config: ActionConfig) -> Any:
                received.append(config.arguments)
                return 0

        actions.register("shell", ShellAction("shell"))
        document = make_document("background", [{"bg": {"run": {"shell": "echo ${ .n }", "await": False}}}])

        instance = await run_document(local_engine, document, {"n": 1})
        async with asyncio.timeout(1):
            while not received:
                await asyncio.sleep(0.005)

        assert instance.output == {"n": 1}
        assert received == [{"command": "echo ${ .n }"}]

    async def test_subworkflow_output(self, local_engine: LocalExecutionEngine) -> None:
        """Test run.workflow starts a child and returns its output."""
        local_engine.registry.register(make_document("double-child", [{"calc": {"set": {"value": "${ .n * 2 }"}}}]))
        parent = make_document(
            "parent", [{"invoke": {"run": {"workflow": {"name": "double-child", "version": "1.0.0"}}}}]
        )

        instance = await run_document(local_engine, parent, {"n": 4})

        assert instance.output == {"value": 8}
        children = [child for child in await local_engine.list_instances() if child.parent_id == instance.id]
        assert [child.workflow_name for child in children] == ["double-child"]

    async def test_failed_subworkflow_faults_parent(self, local_engine: LocalExecutionEngine) -> None:
        """Test a child failure surfaces as a runtime error in the parent."""
        from swflow.core.errors import ErrorType

        local_engine.registry.register(make_document("bad-child", [{"boom": {"call": "fail"}}]))
        parent = make_document("parent", [{"invoke": {"run": {"workflow": {"name": "bad-child"}}}}])

        instance = await run_document(local_engine, parent)

        assert instance.error.error_type is ErrorType.RUNTIME
        assert instance.error.title == "Subworkflow failed"
        assert instance.error.instance == "/do/0/invoke"


@pytest.mark.integration
class TestErrorsAndRetries:
    """Tests for raise, try/catch and retry policies."""

    async def test_caught_error_bound_for_catch_do(self, local_engine: LocalExecutionEngine) -> None:
        """Test the catch clause variable carries the raised error."""
        document = make_document(
            "guarded",
            [
                {
                    "guard": {
                        "try": [{"reject": {"raise": {"error": {"type": "validation", "detail": "bad"}}}}],
                        "catch": {
                            "errors": {"with": {"type": "validation"}},
                            "as": "failure",
                            "do": [
                                {
                                    "recover": {
                                        "set": {"recovered": "${ $failure.detail }", "status": "${ $failure.status }"}
                                    }
                                }
                            ],
                        },
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"recovered": "bad", "status": 400}

    async def test_unmatched_error_propagates(self, local_engine: LocalExecutionEngine) -> None:
        """Test a catch filter that does not match leaves the error uncaught."""
        from swflow.core.types import WorkflowStatus

        document = make_document(
            "unguarded",
            [
                {
                    "guard": {
                        "try": [{"reject": {"raise": {"error": "outOfStock"}}}],
                        "catch": {"errors": {"with": {"type": "timeout"}}},
                    }
                }
            ],
            use={
                "errors": {
                    "outOfStock": {
                        "type": "https://example.com/errors/out-of-stock",
                        "status": 409,
                        "detail": "${ \"Item \" + .sku + \" unavailable\" }",
                    }
                }
            },
        )

        instance = await run_document(local_engine, document, {"sku": "A-1"})

        assert instance.status is WorkflowStatus.FAILED
        assert instance.error.type == "https://example.com/errors/out-of-stock"
        assert instance.error.status == 409
        assert instance.error.detail == "Item A-1 unavailable"
        assert instance.error.instance == "/do/0/guard/try/0/reject"

    async def test_flaky_action_retried_with_backoff(
        self,
        local_engine: LocalExecutionEngine,
        actions: ActionRegistry,
        fake_sleep: RecordingSleep,
        event_bus: RecordingEventBus,
    ) -> None:
        """Test exponential backoff delays and the output of the succeeding attempt."""
        attempts: list[int] = []

        @actions.function("flaky")
        def flaky(value: Any) -> Any:
            attempts.append(len(attempts) + 1)
            if len(attempts) < 3:
                msg = "connection reset"
                raise ConnectionError(msg)
            return {"attempt": len(attempts)}

        document = make_document(
            "retrying",
            [
                {
                    "guard": {
                        "try": [{"send": {"call": "flaky", "output": {"as": "{attempt: .attempt, ok: true}"}}}],
                        "catch": {
                            "errors": {"with": {"type": "communication"}},
                            "retry": {"backoff": {"initial": "PT1S", "multiplier": 2, "maxAttempts": 5}},
                        },
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"attempt": 3, "ok": True}
        assert fake_sleep.delays == [1.0, 2.0]
        assert [event.attempt for event in event_bus.of_type("task.retried")] == [2, 3]

    async def test_retries_stop_at_max_attempts(
        self, local_engine: LocalExecutionEngine, actions: ActionRegistry, fake_sleep: RecordingSleep
    ) -> None:
        """Test a permanently failing action runs exactly max_attempts times then reaches catch.do."""
        calls: list[Any] = []

        @actions.function("down")
        def down(value: Any) -> Any:
            calls.append(value)
            msg = "still down"
            raise ConnectionError(msg)

        document = make_document(
            "giving-up",
            [
                {
                    "guard": {
                        "try": [{"send": {"call": "down"}}],
                        "catch": {
                            "retry": {"delay": {"seconds": 1}, "limit": {"attempt": {"count": 3}}},
                            "do": [{"giveUp": {"set": {"gaveUp": True}}}],
                        },
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document)

        assert len(calls) == 3
        assert fake_sleep.delays == [1.0, 1.0]
        assert instance.output == {"gaveUp": True}

    async def test_catch_without_do_returns_input(self, local_engine: LocalExecutionEngine) -> None:
        """Test a caught error without recovery tasks outputs the try input."""
        document = make_document(
            "swallow",
            [{"guard": {"try": [{"boom": {"call": "fail"}}], "catch": {"errors": {"with": {"type": "runtime"}}}}}],
        )

        instance = await run_document(local_engine, document, {"keep": 1})

        assert instance.output == {"keep": 1}

    @pytest.mark.parametrize(
        ("catch", "reference"),
        [
            ({"do": [{"recover": {"set": {"at": "${ $task.reference }"}}}]}, "/do/0/guard/catch/do/0/recover"),
            (
                [
                    {"errors": {"with": {"type": "timeout"}}},
                    {"do": [{"recover": {"set": {"at": "${ $task.reference }"}}}]},
                ],
                "/do/0/guard/catch/1/do/0/recover",
            ),
        ],
    )
    async def test_catch_handler_position(
        self, local_engine: LocalExecutionEngine, catch: Any, reference: str
    ) -> None:
        """Test handler tasks are positioned where the document declares them."""
        document = make_document("located", [{"guard": {"try": [{"boom": {"call": "fail"}}], "catch": catch}}])

        instance = await run_document(local_engine, document)

        assert instance.output == {"at": reference}


@pytest.mark.integration
class TestFlowControl:
    """Tests for directives, loops and forks."""

    async def test_end_stops_the_workflow(self, local_engine: LocalExecutionEngine) -> None:
        """Test end inside a nested list finishes the whole workflow."""
        document = make_document(
            "ending",
            [
                {"outer": {"do": [{"first": {"set": {"step": 1}, "then": "end"}}, {"second": {"set": {"step": 2}}}]}},
                {"after": {"set": {"step": 3}}},
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"step": 1}

    async def test_exit_leaves_only_the_current_list(self, local_engine: LocalExecutionEngine) -> None:
        """Test exit skips the rest of a nested list and the parent continues."""
        document = make_document(
            "exiting",
            [
                {"outer": {"do": [{"first": {"set": {"step": 1}, "then": "exit"}}, {"second": {"set": {"step": 2}}}]}},
                {"after": {"set": {"step": "${ .step + 2 }"}}},
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"step": 3}

    async def test_for_collects_outputs(self, local_engine: LocalExecutionEngine) -> None:
        """Test each iteration sees the item and index variables."""
        document = make_document(
            "squares",
            [
                {
                    "loop": {
                        "for": {"in": ".numbers", "each": "n"},
                        "do": [{"square": {"set": {"value": "${ $n * $n }", "at": "${ $index }"}}}],
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document, {"numbers": [1, 2, 3]})

        assert instance.output == [{"value": 1, "at": 0}, {"value": 4, "at": 1}, {"value": 9, "at": 2}]

    async def test_for_while_stops_early(self, local_engine: LocalExecutionEngine) -> None:
        """Test the while condition is checked before each iteration."""
        document = make_document(
            "bounded",
            [
                {
                    "loop": {
                        "for": {"in": ".numbers"},
                        "while": "$item < 3",
                        "do": [{"keep": {"set": "${ $item }"}}],
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document, {"numbers": [1, 2, 3, 4]})

        assert instance.output == [1, 2]

    async def test_fork_join(self, local_engine: LocalExecutionEngine) -> None:
        """Test a joined fork outputs every branch keyed by name."""
        document = make_document(
            "parallel",
            [
                {
                    "split": {
                        "fork": {
                            "branches": [
                                {"left": {"set": {"side": "left"}}},
                                {"right": {"call": "double", "with": "${ .n }"}},
                            ]
                        }
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document, {"n": 5})

        assert instance.output == {"left": {"side": "left"}, "right": 10}

    async def test_fork_compete(self, local_engine: LocalExecutionEngine, actions: ActionRegistry) -> None:
        """Test the first finished branch wins and the rest are cancelled."""
        actions.function("block")(block)
        document = make_document(
            "race",
            [
                {
                    "race": {
                        "fork": {
                            "compete": True,
                            "branches": [{"slow": {"call": "block"}}, {"fast": {"set": {"winner": "fast"}}}],
                        }
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"winner": "fast"}

    async def test_fork_join_timeout_keeps_finished_branches(
        self, local_engine: LocalExecutionEngine, actions: ActionRegistry
    ) -> None:
        """Test a join timeout outputs the branches that finished."""
        actions.function("block")(block)
        document = make_document(
            "partial",
            [
                {
                    "split": {
                        "fork": {"branches": [{"slow": {"call": "block"}}, {"fast": {"set": {"done": True}}}]},
                        "timeout": {"after": {"milliseconds": 50}},
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"fast": {"done": True}}

    async def test_fork_join_timeout_cancels_pending_branches(
        self, local_engine: LocalExecutionEngine, actions: ActionRegistry
    ) -> None:
        """Test every branch still running at the join timeout is cancelled."""
        from swflow.core.types import WorkflowStatus

        cancelled: list[str] = []

        @actions.function("hang")
        async def hang(value: Any) -> Any:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append("hang")
                raise
            return value

        document = make_document(
            "three",
            [
                {
                    "split": {
                        "fork": {
                            "branches": [
                                {"a": {"call": "hang"}},
                                {"b": {"call": "hang"}},
                                {"c": {"set": {"ok": 1}}},
                            ]
                        },
                        "timeout": {"after": {"milliseconds": 50}},
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.status is WorkflowStatus.COMPLETED
        assert instance.output == {"c": {"ok": 1}}
        assert cancelled == ["hang", "hang"]

    async def test_fork_branch_failure_faults(self, local_engine: LocalExecutionEngine) -> None:
        """Test an uncaught branch error fails the fork."""
        from swflow.core.types import WorkflowStatus

        document = make_document(
            "broken",
            [{"split": {"fork": {"branches": [{"ok": {"set": {}}}, {"boom": {"call": "fail"}}]}}}],
        )

        instance = await run_document(local_engine, document)

        assert instance.status is WorkflowStatus.FAILED
        assert instance.error.instance == "/do/0/split/fork/branches/1/boom"


@pytest.mark.integration
class TestTimeouts:
    """Tests for task and workflow timeouts."""

    async def test_task_timeout(self, local_engine: LocalExecutionEngine, actions: ActionRegistry) -> None:
        """Test a slow call faults with a timeout error at its position."""
        from swflow.core.errors import ErrorType

        actions.function("block")(block)
        document = make_document("slow", [{"slow": {"call": "block", "timeout": {"after": {"milliseconds": 30}}}}])

        instance = await run_document(local_engine, document)

        assert instance.error.error_type is ErrorType.TIMEOUT
        assert instance.error.instance == "/do/0/slow"

    async def test_task_timeout_can_be_caught(self, local_engine: LocalExecutionEngine, actions: ActionRegistry) -> None:
        """Test timeouts are ordinary errors for catch clauses."""
        actions.function("block")(block)
        document = make_document(
            "patient",
            [
                {
                    "guard": {
                        "try": [{"slow": {"call": "block", "timeout": {"after": {"milliseconds": 30}}}}],
                        "catch": {"errors": {"with": {"type": "timeout"}}, "do": [{"late": {"set": {"late": True}}}]},
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"late": True}

    async def test_workflow_timeout(self, local_engine: LocalExecutionEngine, actions: ActionRegistry) -> None:
        """Test the document timeout faults the whole instance."""
        from swflow.core.errors import ErrorType
        from swflow.core.types import WorkflowStatus

        actions.function("block")(block)
        document = make_document("stuck", [{"slow": {"call": "block"}}], timeout={"after": {"milliseconds": 50}})

        instance = await run_document(local_engine, document)

        assert instance.status is WorkflowStatus.FAILED
        assert instance.error.error_type is ErrorType.TIMEOUT
        assert instance.error.instance == "/do/0/slow"


@pytest.mark.integration
class TestWaitingAndEvents:
    """Tests for wait, listen and emit."""

    async def test_wait_uses_sleep_hook(
        self, local_engine: LocalExecutionEngine, fake_sleep: RecordingSleep, event_bus: RecordingEventBus
    ) -> None:
        """Test wait suspends the instance for the remaining duration."""
        document = make_document("pause", [{"pause": {"wait": {"seconds": 5}}}])

        instance = await run_document(local_engine, document, {"a": 1})

        assert instance.output == {"a": 1}
        assert len(fake_sleep.delays) == 1
        assert 4.0 < fake_sleep.delays[0] <= 5.0
        assert event_bus.of_type("workflow.suspended")
        assert event_bus.of_type("workflow.resumed")

    async def test_listen_resumes_on_correlated_event(self, local_engine: LocalExecutionEngine) -> None:
        """Test only the event with the expected correlation key resumes the instance."""
        from swflow.core.events import CloudEvent
        from swflow.core.types import WorkflowStatus

        document = make_document("payment", [PAYMENT_LISTENER, {"confirm": {"set": {"paid": "${ .amount }"}}}])
        local_engine.registry.register(document)
        instance = await local_engine.start_workflow("payment", {"orderId": "o-1"})

        suspended = await wait_for_status(local_engine, instance.id, WorkflowStatus.SUSPENDED)
        assert len(suspended.pending_correlations) == 1

        other = CloudEvent(type="payment.received", data={"orderId": "o-2", "amount": 1})
        assert await local_engine.publish(other) == []
        matching = CloudEvent(type="payment.received", data={"orderId": "o-1", "amount": 42})
        assert await local_engine.publish(matching) == [instance.id]

        done = await local_engine.wait_for_completion(instance.id, timeout=2)
        assert done.output == {"paid": 42}
        assert done.pending_correlations == []

    async def test_listen_all_outputs_list(self, local_engine: LocalExecutionEngine) -> None:
        """Test listening to all filters outputs every event in filter order."""
        from swflow.core.events import CloudEvent
        from swflow.core.types import WorkflowStatus

        document = make_document(
            "both",
            [{"gather": {"listen": {"to": {"all": [{"with": {"type": "a"}}, {"with": {"type": "b"}}]}}}}],
        )
        local_engine.registry.register(document)
        instance = await local_engine.start_workflow("both")
        await wait_for_status(local_engine, instance.id, WorkflowStatus.SUSPENDED)

        await local_engine.publish(CloudEvent(type="b", data="second"))
        await local_engine.publish(CloudEvent(type="a", data="first"))

        done = await local_engine.wait_for_completion(instance.id, timeout=2)
        assert done.output == ["first", "second"]

    async def test_listen_timeout_jumps_to_then(self, local_engine: LocalExecutionEngine) -> None:
        """Test a listen timeout with then continues at the named task."""
        document = make_document(
            "expiring",
            [
                {
                    "awaitPayment": {
                        "listen": {"to": {"one": {"with": {"type": "never"}}}},
                        "timeout": {"after": {"milliseconds": 30}, "then": "expire"},
                    }
                },
                {"confirm": {"set": {"paid": True}, "then": "end"}},
                {"expire": {"set": {"paid": False}}},
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.output == {"paid": False}

    async def test_listen_timeout_without_then_faults(self, local_engine: LocalExecutionEngine) -> None:
        """Test a listen timeout without then is a timeout error."""
        from swflow.core.errors import ErrorType

        document = make_document(
            "impatient",
            [
                {
                    "awaitPayment": {
                        "listen": {"to": {"one": {"with": {"type": "never"}}}},
                        "timeout": {"after": {"milliseconds": 30}},
                    }
                }
            ],
        )

        instance = await run_document(local_engine, document)

        assert instance.error.error_type is ErrorType.TIMEOUT
        assert instance.error.instance == "/do/0/awaitPayment"

    async def test_emit_publishes_and_resumes_listeners(
        self, local_engine: LocalExecutionEngine, event_bus: RecordingEventBus
    ) -> None:
        """Test an emitted event reaches the bus and other instances' listeners."""
        from swflow.core.types import WorkflowStatus

        local_engine.registry.register(make_document("payment", [PAYMENT_LISTENER]))
        listener = await local_engine.start_workflow("payment", {"orderId": "o-7"})
        await wait_for_status(local_engine, listener.id, WorkflowStatus.SUSPENDED)

        payer = make_document(
            "payer",
            [
                {
                    "pay": {
                        "emit": {
                            "event": {
                                "with": {
                                    "type": "payment.received",
                                    "data": {"orderId": "${ .orderId }", "amount": 9},
                                }
                            }
                        }
                    }
                }
            ],
        )
        await run_document(local_engine, payer, {"orderId": "o-7"})

        assert [(event.type, event.source) for event in event_bus.published] == [("payment.received", "swflow")]
        done = await local_engine.wait_for_completion(listener.id, timeout=2)
        assert done.output == {"orderId": "o-7", "amount": 9}

    async def test_emit_requires_type(self, local_engine: LocalExecutionEngine) -> None:
        """Test an emitted event without type is a configuration error."""
        from swflow.core.errors import ErrorType

        document = make_document("untyped", [{"pay": {"emit": {"event": {"with": {"data": 1}}}}}])

        instance = await run_document(local_engine, document)

        assert instance.error.error_type is ErrorType.CONFIGURATION

    async def test_schedule_on_event_starts_instance(self, local_engine: LocalExecutionEngine) -> None:
        """Test a matching event starts a workflow with the event data as input."""
        from swflow.core.events import CloudEvent

        document = make_document(
            "welcome",
            [{"greet": {"set": {"greeting": "${ \"Welcome \" + .user }"}}}],
            schedule={"on": {"one": {"with": {"type": "user.signup"}}}},
        )
        local_engine.registry.register(document)

        started = await local_engine.publish(CloudEvent(type="user.signup", data={"user": "ada"}))

        assert len(started) == 1
        instance = await local_engine.wait_for_completion(started[0], timeout=2)
        assert instance.input == {"user": "ada"}
        assert instance.output == {"greeting": "Welcome ada"}

    async def test_schedule_every_starts_instances(
        self, local_engine: LocalExecutionEngine, fake_sleep: RecordingSleep
    ) -> None:
        """Test an interval schedule waits its period before each start."""
        document = make_document("tick", [{"noop": {"set": {"ticked": True}}}], schedule={"every": "PT10S"})
        local_engine.registry.register(document)

        await local_engine.start_schedules()
        try:
            async with asyncio.timeout(2):
                while len(await local_engine.list_instances()) < 2:
                    await asyncio.sleep(0.005)
        finally:
            await local_engine.stop_schedules()

        assert fake_sleep.delays[:2] == [10.0, 10.0]
        assert all(i.workflow_name == "tick" for i in await local_engine.list_instances())

    async def test_cron_schedule_is_only_logged(self, local_engine: LocalExecutionEngine) -> None:
        """Test a cron schedule never starts an instance on the local engine."""
        from structlog.testing import capture_logs

        document = make_document("nightly", [{"noop": {"set": {}}}], schedule={"cron": "0 0 * * *"})
        local_engine.registry.register(document)

        with capture_logs() as logs:
            await local_engine.start_schedules()
        await local_engine.stop_schedules()

        assert [entry["event"] for entry in logs] == ["cron_schedule_unsupported"]
        assert await local_engine.list_instances() == []


async def _child_of(engine: LocalExecutionEngine, parent_id: UUID) -> WorkflowInstanceData:
    async with asyncio.timeout(2):
        while True:
            children = [i for i in await engine.list_instances() if i.parent_id == parent_id]
            if children:
                return children[0]
            await asyncio.sleep(0.005)


@pytest.mark.integration
class TestCancelAndResume:
    """Tests for cancellation and resuming persisted instances."""

    async def test_cancel_suspended_instance(self, local_engine: LocalExecutionEngine) -> None:
        """Test cancelling terminates the instance and drops its correlations."""
        from swflow.core.types import WorkflowStatus
        from swflow.exceptions import WorkflowAlreadyCompletedError

        local_engine.registry.register(make_document("payment", [PAYMENT_LISTENER]))
        instance = await local_engine.start_workflow("payment", {"orderId": "o-1"})
        await wait_for_status(local_engine, instance.id, WorkflowStatus.SUSPENDED)

        cancelled = await local_engine.cancel_workflow(instance.id, "customer left")

        assert cancelled.status is WorkflowStatus.TERMINATED
        assert local_engine.correlations.pending(instance.id) == []
        with pytest.raises(WorkflowAlreadyCompletedError):
            await local_engine.cancel_workflow(instance.id)

    async def test_cancel_cascades_to_children(self, local_engine: LocalExecutionEngine) -> None:
        """Test terminating a parent terminates its running subworkflow."""
        from swflow.core.types import WorkflowStatus

        local_engine.registry.register(make_document("payment", [PAYMENT_LISTENER]))
        parent_document = make_document("checkout", [{"pay": {"run": {"workflow": {"name": "payment"}}}}])
        local_engine.registry.register(parent_document)
        parent = await local_engine.start_workflow("checkout", {"orderId": "o-1"})
        child = await _child_of(local_engine, parent.id)
        await wait_for_status(local_engine, child.id, WorkflowStatus.SUSPENDED)

        await local_engine.cancel_workflow(parent.id)

        assert (await local_engine.get_instance(child.id)).status is WorkflowStatus.TERMINATED

    async def test_unknown_instance(self, local_engine: LocalExecutionEngine) -> None:
        """Test lookups of missing instances raise."""
        from uuid import uuid4

        from swflow.exceptions import WorkflowInstanceNotFoundError, WorkflowNotFoundError

        with pytest.raises(WorkflowInstanceNotFoundError):
            await local_engine.get_instance(uuid4())
        with pytest.raises(WorkflowInstanceNotFoundError):
            await local_engine.resume_instance(uuid4())
        with pytest.raises(WorkflowNotFoundError):
            await local_engine.start_workflow("ghost")

    async def test_resume_completed_instance_rejected(self, local_engine: LocalExecutionEngine) -> None:
        """Test terminal instances cannot be resumed."""
        from swflow.exceptions import WorkflowAlreadyCompletedError

        instance = await run_document(local_engine, make_document("quick", [{"a": {"set": {}}}]))

        with pytest.raises(WorkflowAlreadyCompletedError):
            await local_engine.resume_instance(instance.id)

    async def test_resume_after_restart(self, workflow_registry: WorkflowRegistry, fake_sleep: RecordingSleep) -> None:
        """Test a new engine continues at the listen checkpoint without replaying earlier tasks."""
        from swflow.config import EngineConfig
        from swflow.core.events import CloudEvent
        from swflow.core.types import WorkflowStatus
        from swflow.engine.local import LocalExecutionEngine
        from swflow.engine.store import InMemoryInstanceStore
        from swflow.runtime.actions import ActionRegistry

        calls: list[Any] = []
        store = InMemoryInstanceStore()

        def prepare(value: Any) -> Any:
            calls.append(value)
            return value

        def make_engine() -> LocalExecutionEngine:
            actions = ActionRegistry()
            actions.function("prepare")(prepare)
            return LocalExecutionEngine(
                workflow_registry, store=store, config=EngineConfig(sleep=fake_sleep), actions=actions
            )

        workflow_registry.register(
            make_document(
                "payment",
                [{"prepare": {"call": "prepare"}}, PAYMENT_LISTENER, {"confirm": {"set": {"paid": "${ .amount }"}}}],
            )
        )

        first = make_engine()
        instance = await first.start_workflow("payment", {"orderId": "o-1"})
        await wait_for_status(first, instance.id, WorkflowStatus.SUSPENDED)
        await first.shutdown()

        saved = await store.load(instance.id)
        assert saved is not None
        assert not saved.is_terminal
        assert saved.position == "/do/1/awaitPayment"

        second = make_engine()
        await second.resume_instance(instance.id)
        await wait_for_status(second, instance.id, WorkflowStatus.SUSPENDED)
        assert await second.publish(CloudEvent(type="payment.received", data={"orderId": "o-1", "amount": 5})) == [
            instance.id
        ]

        done = await second.wait_for_completion(instance.id, timeout=2)
        assert done.output == {"paid": 5}
        assert len(calls) == 1
