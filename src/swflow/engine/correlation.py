"""Event correlation for suspended ``listen`` tasks.

Every waiting listener is a :class:`PendingCorrelation`. An inbound event is
offered to every pending correlation; a deadline timer races it. Whichever
arrives first consumes the correlation, and the loser is a no-op, so every
listener resumes exactly once.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog

from swflow.core.errors import WorkflowException
from swflow.core.events import CloudEvent
from swflow.core.types import ListenMode

if TYPE_CHECKING:
    from swflow.core.tasks import EventFilter
    from swflow.engine.dataflow import DataFlowProcessor

__all__ = ["CorrelationOutcome", "EventCorrelationStore", "PendingCorrelation"]

logger = structlog.get_logger(__name__)


@dataclass
class CorrelationOutcome:
    """How a pending correlation was consumed.

    Attributes:
        events: Matched events in filter order. Empty on timeout.
        timed_out: The deadline fired before the filters were satisfied.
    """

    events: list[CloudEvent] = field(default_factory=list)
    timed_out: bool = False


@dataclass(eq=False)
class PendingCorrelation:
    """A listener waiting for events.

    Attributes:
        instance_id: Instance to resume.
        position: Position of the listen task inside that instance.
        filters: Event filters to satisfy.
        mode: ``one``/``any`` resume on the first match, ``all`` needs every filter.
        expected: Per filter, the correlation values captured at registration
            or pinned by the first event an ``all`` listener matched.
        deadline: When the listener gives up, if ever.
        id: Identifier of the correlation.
        matched: Events matched so far, keyed by filter index.
    """

    instance_id: UUID
    position: str
    filters: tuple[EventFilter, ...]
    mode: ListenMode
    expected: list[dict[str, Any]]
    deadline: datetime | None = None
    id: UUID = field(default_factory=uuid4)
    matched: dict[int, CloudEvent] = field(default_factory=dict)
    future: asyncio.Future[CorrelationOutcome] | None = field(default=None, repr=False)
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def is_satisfied(self) -> bool:
        if self.mode is ListenMode.ALL:
            return len(self.matched) == len(self.filters)
        return bool(self.matched)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "instance_id": str(self.instance_id),
            "position": self.position,
            "mode": self.mode.value,
            "filters": [
                {
                    "with": dict(flt.with_),
                    "correlate": {
                        key: {"from": corr.from_, "expect": corr.expect} for key, corr in flt.correlate.items()
                    },
                }
                for flt in self.filters
            ],
            "expected": self.expected,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "matched": {str(index): event.to_dict() for index, event in self.matched.items()},
        }


class EventCorrelationStore:
    """Tracks pending correlations and routes events and deadlines to them.

    Args:
        processor: Evaluates correlation ``from`` expressions against events.
    """

    def __init__(self, processor: DataFlowProcessor) -> None:
        self.processor = processor
        self._pending: dict[UUID, PendingCorrelation] = {}

    def register(
        self,
        instance_id: UUID,
        position: str,
        filters: tuple[EventFilter, ...],
        mode: ListenMode,
        expected: list[dict[str, Any]] | None = None,
        deadline: datetime | None = None,
        *,
        correlation_id: UUID | None = None,
        matched: dict[int, CloudEvent] | None = None,
    ) -> PendingCorrelation:
        """Start waiting.

        ``correlation_id`` and ``matched`` restore a correlation persisted
        before a restart. A deadline already in the past fires on the next
        loop iteration.
        """
        loop = asyncio.get_running_loop()
        pending = PendingCorrelation(
            instance_id=instance_id,
            position=position,
            filters=filters,
            mode=mode,
            expected=[dict(item) for item in expected] if expected else [{} for _ in filters],
            deadline=deadline,
            id=correlation_id or uuid4(),
            matched=dict(matched or {}),
        )
        pending.future = loop.create_future()
        self._pending[pending.id] = pending

        if deadline is not None:
            delay = max(0.0, (deadline - datetime.now(timezone.utc)).total_seconds())
            pending.timer = loop.call_later(delay, self.on_deadline, pending)

        logger.debug(
            "correlation_registered",
            correlation_id=str(pending.id),
            instance_id=str(instance_id),
            position=position,
            mode=mode.value,
        )
        return pending

    def matches(self, flt: EventFilter, event: CloudEvent, expected: dict[str, Any] | None = None) -> bool:
        """Whether ``event`` satisfies one filter.

        ``with`` attributes compare by equality (a ``data`` mapping matches
        when every listed key is equal). Correlation keys evaluate their
        ``from`` expression on the event envelope and must equal the value
        captured at registration, when one was captured. A key without an
        expected value accepts any value the expression yields.
        """
        return self._correlate(flt, event, expected) is not None

    def _correlate(
        self, flt: EventFilter, event: CloudEvent, expected: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Match one filter, returning the event's correlation values or ``None``."""
        for key, value in flt.with_.items():
            actual = event.get(key)
            if key == "data" and isinstance(value, dict) and isinstance(actual, dict):
                if any(actual.get(item) != expected_item for item, expected_item in value.items()):
                    return None
            elif actual != value:
                return None

        values: dict[str, Any] = {}
        if not flt.correlate:
            return values
        envelope = event.to_dict()
        for key, correlation in flt.correlate.items():
            try:
                values[key] = self.processor.evaluate(correlation.from_, envelope, {})
            except WorkflowException:
                logger.warning("correlation_key_failed", key=key, event_id=event.id)
                return None
            if expected and key in expected and values[key] != expected[key]:
                return None
        return values

    def _offer(self, pending: PendingCorrelation, event: CloudEvent) -> bool:
        for index, flt in enumerate(pending.filters):
            if index in pending.matched:
                continue
            values = self._correlate(flt, event, pending.expected[index])
            if values is None:
                continue
            pending.matched[index] = event
            if pending.mode is ListenMode.ALL:
                self._pin(pending, values)
            return True
        return False

    @staticmethod
    def _pin(pending: PendingCorrelation, values: dict[str, Any]) -> None:
        """Require the remaining ``all`` filters to carry the same key values."""
        for index, flt in enumerate(pending.filters):
            if index in pending.matched:
                continue
            for key, value in values.items():
                if key in flt.correlate:
                    pending.expected[index].setdefault(key, value)

    def _consume(self, pending: PendingCorrelation, outcome: CorrelationOutcome) -> bool:
        if self._pending.pop(pending.id, None) is None:
            return False
        if pending.timer is not None:
            pending.timer.cancel()
        if pending.future is not None and not pending.future.done():
            pending.future.set_result(outcome)
        return True

    def on_event(self, event: CloudEvent) -> list[PendingCorrelation]:
        """Offer an event to every pending correlation.

        Returns:
            The correlations this event completed (and therefore resumed).
        """
        resumed = []
        for pending in list(self._pending.values()):
            if not self._offer(pending, event) or not pending.is_satisfied:
                continue
            events = [pending.matched[index] for index in sorted(pending.matched)]
            if self._consume(pending, CorrelationOutcome(events=events)):
                logger.info(
                    "correlation_matched",
                    correlation_id=str(pending.id),
                    instance_id=str(pending.instance_id),
                    event_type=event.type,
                )
                resumed.append(pending)
        return resumed

    def on_deadline(self, pending: PendingCorrelation) -> bool:
        """Fire the deadline of ``pending``.

        Returns:
            ``True`` if the deadline consumed the correlation, ``False`` if an
            event (or a cancellation) got there first.
        """
        consumed = self._consume(pending, CorrelationOutcome(timed_out=True))
        if consumed:
            logger.info("correlation_timed_out", correlation_id=str(pending.id), instance_id=str(pending.instance_id))
        return consumed

    async def wait(self, pending: PendingCorrelation) -> CorrelationOutcome:
        """Suspend until ``pending`` is consumed. Cancelling the waiter cancels the correlation."""
        if pending.future is None:
            msg = "Correlation was not registered with this store"
            raise RuntimeError(msg)
        try:
            return await pending.future
        except asyncio.CancelledError:
            self.cancel(pending)
            raise

    def cancel(self, pending: PendingCorrelation) -> None:
        if self._pending.pop(pending.id, None) is None:
            return
        if pending.timer is not None:
            pending.timer.cancel()
        if pending.future is not None and not pending.future.done():
            pending.future.cancel()

    def cancel_instance(self, instance_id: UUID) -> int:
        """Cancel every correlation of an instance. Returns how many were pending."""
        owned = [pending for pending in self._pending.values() if pending.instance_id == instance_id]
        for pending in owned:
            self.cancel(pending)
        return len(owned)

    def pending(self, instance_id: UUID | None = None) -> list[PendingCorrelation]:
        return [
            pending for pending in self._pending.values() if instance_id is None or pending.instance_id == instance_id
        ]
