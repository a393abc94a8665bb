"""Parsing of workflow documents into definition objects.

The accepted shape follows the Serverless Workflow DSL: a task list is a
list of single-key mappings ``{task_name: task_body}`` and the task kind is
given by which reserved key the body carries.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from swflow.core.durations import parse_duration
from swflow.core.errors import ErrorType, normalize_error_type
from swflow.core.tasks import (
    Backoff,
    CallTask,
    CatchClause,
    Correlation,
    DoTask,
    EmitTask,
    ErrorSpec,
    EventFilter,
    ExportSpec,
    ForkTask,
    ForTask,
    InputSpec,
    ListenTask,
    OutputSpec,
    RaiseTask,
    RetryPolicy,
    RunTask,
    SetTask,
    SwitchCase,
    SwitchTask,
    Task,
    Timeout,
    TryTask,
    WaitTask,
)
from swflow.core.types import ListenMode
from swflow.exceptions import WorkflowValidationError

__all__ = [
    "parse_error_spec",
    "parse_input",
    "parse_listen_to",
    "parse_output",
    "parse_retry",
    "parse_task",
    "parse_task_list",
    "parse_timeout",
]

# ``for`` and ``try`` bodies also carry ``do``/``catch`` keys, so they are probed first.
_KIND_KEYS = ("for", "fork", "try", "switch", "set", "call", "run", "raise", "wait", "listen", "emit", "do")
_RUN_KINDS = ("shell", "script", "container", "workflow")


def _invalid(path: str, message: str) -> WorkflowValidationError:
    return WorkflowValidationError([f"{path}: {message}"])


def _mapping(value: Any, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise _invalid(path, "must be a mapping")
    return value


def _duration(value: Any, path: str) -> timedelta:
    try:
        return parse_duration(value)
    except ValueError as e:
        raise _invalid(path, str(e)) from e


def _schema(value: Any) -> dict[str, Any] | None:
    if value is None:
        return None
    if isinstance(value, dict) and "document" in value:
        return value["document"]
    return value


def parse_input(value: Any, path: str) -> InputSpec | None:
    if value is None:
        return None
    value = _mapping(value, path)
    return InputSpec(schema=_schema(value.get("schema")), from_=value.get("from"))


def parse_output(value: Any, path: str) -> OutputSpec | None:
    if value is None:
        return None
    value = _mapping(value, path)
    return OutputSpec(as_=value.get("as"), schema=_schema(value.get("schema")))


def _parse_export(value: Any, path: str) -> ExportSpec | None:
    if value is None:
        return None
    value = _mapping(value, path)
    return ExportSpec(as_=value.get("as"), schema=_schema(value.get("schema")))


def parse_timeout(value: Any, path: str) -> Timeout | None:
    """Parse ``{"after": <duration>, "then": <directive>}`` or a bare duration."""
    if value is None:
        return None
    if isinstance(value, dict) and "after" in value:
        return Timeout(after=_duration(value["after"], f"{path}/after"), then=value.get("then"))
    return Timeout(after=_duration(value, path))


def parse_retry(value: Any, path: str) -> RetryPolicy:
    """Parse a retry policy.

    Both the DSL layout (``delay``, ``backoff.exponential``,
    ``limit.attempt.count``, ``limit.duration``, ``jitter``) and the flat
    layout (``initialDelay``, ``multiplier``, ``maxDelay``, ``maxAttempts``,
    ``maxDuration``, ``strategy``) are accepted.
    """
    value = _mapping(value, path)
    flat = dict(value)
    backoff = Backoff.EXPONENTIAL if "multiplier" in value else Backoff.CONSTANT
    multiplier = float(value.get("multiplier", 2.0))

    raw_backoff = value.get("backoff")
    if isinstance(raw_backoff, str):
        raw_backoff = {raw_backoff: {}}
    if isinstance(raw_backoff, dict):
        kinds = [key for key in raw_backoff if key in Backoff.__members__.values()]
        if kinds:
            backoff = Backoff(kinds[0])
            options = raw_backoff[kinds[0]] or {}
            multiplier = float(options.get("multiplier", multiplier))
        else:
            # flat backoff block: {initial, multiplier, maxAttempts, ...}
            flat.update(raw_backoff)
            backoff = Backoff.EXPONENTIAL
            multiplier = float(raw_backoff.get("multiplier", multiplier))

    match flat.get("strategy"):
        case None:
            pass
        case "none":
            flat["maxAttempts"] = 1
        case "fixed":
            backoff = Backoff.CONSTANT
        case "backoff":
            backoff = Backoff.EXPONENTIAL
        case other:
            raise _invalid(path, f"unknown retry strategy '{other}'")

    delay = flat.get("delay", flat.get("initialDelay", flat.get("initial")))
    limit = flat.get("limit") or {}
    attempt_limit = limit.get("attempt") or {}
    max_attempts = attempt_limit.get("count", flat.get("maxAttempts"))
    max_duration = limit.get("duration", flat.get("maxDuration"))
    max_delay = flat.get("maxDelay")

    jitter = None
    if flat.get("jitter") is not None:
        raw_jitter = _mapping(flat["jitter"], f"{path}/jitter")
        jitter = (
            _duration(raw_jitter.get("from", {"seconds": 0}), f"{path}/jitter/from"),
            _duration(raw_jitter.get("to", {"seconds": 0}), f"{path}/jitter/to"),
        )

    if max_attempts is not None and int(max_attempts) < 1:
        raise _invalid(path, "maxAttempts must be at least 1")

    return RetryPolicy(
        delay=_duration(delay, f"{path}/delay") if delay is not None else timedelta(0),
        backoff=backoff,
        multiplier=multiplier,
        max_delay=_duration(max_delay, f"{path}/maxDelay") if max_delay is not None else None,
        max_attempts=int(max_attempts) if max_attempts is not None else None,
        max_duration=_duration(max_duration, f"{path}/limit/duration") if max_duration is not None else None,
        jitter=jitter,
        when=flat.get("when"),
        except_when=flat.get("exceptWhen"),
    )


def parse_error_spec(value: Any, path: str) -> ErrorSpec:
    value = _mapping(value, path)
    if "type" not in value:
        raise _invalid(path, "error is missing 'type'")
    error_type = normalize_error_type(value["type"])
    status = value.get("status")
    if status is None:
        builtin = next((member for member in ErrorType if member.uri == error_type), None)
        if builtin is None:
            raise _invalid(path, f"custom error '{error_type}' must declare a status")
        status = builtin.default_status
    return ErrorSpec(type=error_type, status=int(status), title=value.get("title"), detail=value.get("detail"))


def _parse_event_filter(value: Any, path: str) -> EventFilter:
    value = _mapping(value, path)
    correlate = {}
    for key, raw in (value.get("correlate") or {}).items():
        raw = _mapping(raw, f"{path}/correlate/{key}")
        if "from" not in raw:
            raise _invalid(f"{path}/correlate/{key}", "correlation is missing 'from'")
        correlate[key] = Correlation(from_=raw["from"], expect=raw.get("expect"))
    return EventFilter(with_=dict(value.get("with") or {}), correlate=correlate)


def parse_listen_to(value: Any, path: str) -> tuple[ListenMode, tuple[EventFilter, ...]]:
    """Parse ``{one: filter}``, ``{any: [filters]}`` or ``{all: [filters]}``."""
    value = _mapping(value, path)
    if "one" in value:
        return ListenMode.ONE, (_parse_event_filter(value["one"], f"{path}/one"),)
    for mode in (ListenMode.ANY, ListenMode.ALL):
        if mode.value in value:
            raw_filters = value[mode.value]
            if not isinstance(raw_filters, list) or not raw_filters:
                raise _invalid(f"{path}/{mode.value}", "must be a non-empty list of event filters")
            return mode, tuple(
                _parse_event_filter(raw, f"{path}/{mode.value}/{index}") for index, raw in enumerate(raw_filters)
            )
    raise _invalid(path, "must declare one of 'one', 'any' or 'all'")


def _parse_catch(value: Any, segments: tuple[str | int, ...], task_path: str) -> CatchClause:
    path = "/".join([task_path, *(str(segment) for segment in segments)])
    value = _mapping(value, path)
    errors = value.get("errors") or {}
    retry = value.get("retry")
    do = value.get("do")
    return CatchClause(
        errors=dict(_mapping(errors, f"{path}/errors").get("with") or {}),
        as_=value.get("as", "error"),
        when=value.get("when"),
        except_when=value.get("exceptWhen"),
        retry=retry if isinstance(retry, str) or retry is None else parse_retry(retry, f"{path}/retry"),
        do=parse_task_list(do, f"{path}/do") if do is not None else None,
        segments=segments,
    )


def parse_task_list(items: Any, path: str) -> tuple[Task, ...]:
    """Parse a list of ``{name: body}`` entries.

    Raises:
        WorkflowValidationError: If the list or any task in it is malformed.
    """
    if not isinstance(items, list):
        raise _invalid(path, "must be a list of tasks")
    tasks = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or len(item) != 1:
            raise _invalid(f"{path}/{index}", "each task must be a mapping with exactly one key")
        ((name, body),) = item.items()
        tasks.append(parse_task(str(name), body, f"{path}/{index}/{name}"))
    return tuple(tasks)


def parse_task(name: str, body: Any, path: str) -> Task:  # noqa: C901, PLR0911
    body = _mapping(body, path)
    kind = next((key for key in _KIND_KEYS if key in body), None)
    if kind is None:
        raise _invalid(path, f"unknown task kind, expected one of {', '.join(_KIND_KEYS)}")

    common: dict[str, Any] = {
        "name": name,
        "input": parse_input(body.get("input"), f"{path}/input"),
        "output": parse_output(body.get("output"), f"{path}/output"),
        "export": _parse_export(body.get("export"), f"{path}/export"),
        "then": body.get("then"),
        "if_": body.get("if"),
        "timeout": parse_timeout(body.get("timeout"), f"{path}/timeout"),
        "metadata": dict(body.get("metadata") or {}),
    }

    match kind:
        case "set":
            return SetTask(set=body["set"], **common)
        case "call":
            return CallTask(call=str(body["call"]), with_=body.get("with"), **common)
        case "run":
            run = _mapping(body["run"], f"{path}/run")
            run_kind = next((key for key in _RUN_KINDS if key in run), None)
            if run_kind is None:
                raise _invalid(f"{path}/run", f"expected one of {', '.join(_RUN_KINDS)}")
            config = run[run_kind]
            if not isinstance(config, dict):
                config = {"command": config}
            return RunTask(run_kind=run_kind, config=config, await_=bool(run.get("await", True)), **common)
        case "switch":
            cases = []
            raw_cases = body["switch"]
            if not isinstance(raw_cases, list):
                raise _invalid(f"{path}/switch", "must be a list of cases")
            for index, entry in enumerate(raw_cases):
                if not isinstance(entry, dict) or len(entry) != 1:
                    raise _invalid(f"{path}/switch/{index}", "each case must be a mapping with exactly one key")
                ((case_name, case_body),) = entry.items()
                case_body = _mapping(case_body, f"{path}/switch/{index}/{case_name}")
                cases.append(SwitchCase(name=str(case_name), when=case_body.get("when"), then=case_body.get("then")))
            return SwitchTask(cases=tuple(cases), **common)
        case "for":
            loop = _mapping(body["for"], f"{path}/for")
            if "in" not in loop:
                raise _invalid(f"{path}/for", "is missing 'in'")
            return ForTask(
                in_=loop["in"],
                each=loop.get("each", "item"),
                at=loop.get("at", "index"),
                while_=body.get("while"),
                do=parse_task_list(body.get("do", []), f"{path}/do"),
                **common,
            )
        case "fork":
            fork = _mapping(body["fork"], f"{path}/fork")
            return ForkTask(
                branches=parse_task_list(fork.get("branches", []), f"{path}/fork/branches"),
                compete=bool(fork.get("compete", False)),
                **common,
            )
        case "try":
            raw_catch = body.get("catch") or {}
            if isinstance(raw_catch, list):
                located = [(("catch", index), entry) for index, entry in enumerate(raw_catch)]
            else:
                located = [(("catch",), raw_catch)]
            return TryTask(
                try_=parse_task_list(body["try"], f"{path}/try"),
                catch=tuple(_parse_catch(entry, segments, path) for segments, entry in located),
                **common,
            )
        case "raise":
            error = _mapping(body["raise"], f"{path}/raise").get("error")
            if error is None:
                raise _invalid(f"{path}/raise", "is missing 'error'")
            spec = error if isinstance(error, str) else parse_error_spec(error, f"{path}/raise/error")
            return RaiseTask(error=spec, **common)
        case "wait":
            return WaitTask(duration=_duration(body["wait"], f"{path}/wait"), **common)
        case "listen":
            listen = _mapping(body["listen"], f"{path}/listen")
            mode, filters = parse_listen_to(listen.get("to"), f"{path}/listen/to")
            read = listen.get("read", "data")
            if read not in ("data", "envelope"):
                raise _invalid(f"{path}/listen/read", "must be 'data' or 'envelope'")
            return ListenTask(mode=mode, filters=filters, read=read, **common)
        case "emit":
            event = _mapping(_mapping(body["emit"], f"{path}/emit").get("event"), f"{path}/emit/event")
            return EmitTask(event=dict(event.get("with") or {}), **common)
        case _:
            return DoTask(do=parse_task_list(body["do"], f"{path}/do"), **common)
