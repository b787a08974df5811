"""In-memory async event bus for pushing proposal snapshots to subscribers.

Every successful proposal write publishes the full new document. Views
subscribe with an optional event type and an optional filter on the
snapshot, and always render the last snapshot they received.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from council.models.proposal import Proposal

logger = logging.getLogger(__name__)

SnapshotFilter = Callable[[dict[str, Any]], bool]

PROPOSAL_EVENT_TYPES: frozenset[str] = frozenset(
    {
        "proposal.created",
        "proposal.updated",
        "proposal.resolved",
        "province.updated",
    }
)


class EventBus:
    """Async pub/sub of snapshot envelopes ``{"type": ..., "data": ...}``.

    Usage:
        bus = EventBus()

        async with bus.subscribe("proposal.updated") as sub:
            async for envelope in sub:
                ...

        await bus.publish("proposal.updated", proposal.model_dump(mode="json"))
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    async def publish(self, event_type: str, data: dict[str, Any]) -> int:
        """Deliver an envelope to every matching subscriber.

        Returns the number of subscribers that received it. A full queue
        drops the envelope for that subscriber only.
        """
        envelope = {"type": event_type, "data": data}
        delivered = 0
        for sub in list(self._subscriptions):
            if not sub.matches(event_type, data):
                continue
            try:
                sub.queue.put_nowait(envelope)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("event_bus_drop: %s for slow subscriber", event_type)
        return delivered

    async def publish_proposal(
        self, proposal: Proposal, event_type: str = "proposal.updated"
    ) -> int:
        return await self.publish(event_type, proposal.model_dump(mode="json"))

    def subscribe(
        self,
        event_type: str | None = None,
        snapshot_filter: SnapshotFilter | None = None,
        max_size: int = 100,
    ) -> Subscription:
        """Create a subscription (all event types when ``event_type`` is None).

        Use it as an async context manager so it is torn down on exit.
        """
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_size)
        return Subscription(self, queue, event_type, snapshot_filter)

    def _register(self, sub: Subscription) -> None:
        self._subscriptions.append(sub)

    def _unregister(self, sub: Subscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


class Subscription:
    """An active subscription. Async context manager and async iterator."""

    def __init__(
        self,
        bus: EventBus,
        queue: asyncio.Queue[dict[str, Any]],
        event_type: str | None,
        snapshot_filter: SnapshotFilter | None,
    ) -> None:
        self._bus = bus
        self.queue = queue
        self._event_type = event_type
        self._filter = snapshot_filter
        self._active = False

    def matches(self, event_type: str, data: dict[str, Any]) -> bool:
        if self._event_type is not None and self._event_type != event_type:
            return False
        return self._filter is None or self._filter(data)

    async def __aenter__(self) -> Subscription:
        self._bus._register(self)
        self._active = True
        return self

    async def __aexit__(self, *args: object) -> None:
        self._active = False
        self._bus._unregister(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> dict[str, Any]:
        if not self._active:
            raise StopAsyncIteration
        try:
            return await self.queue.get()
        except asyncio.CancelledError:
            raise StopAsyncIteration from None

    async def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Next envelope, or None if nothing arrives within ``timeout`` seconds."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except TimeoutError:
            return None
