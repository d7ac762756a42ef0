"""
In-process domain event bus.

Downstream consumers (analytics mirror, notifications) subscribe to named
events. Events are published only after the transaction that produced them
has committed; a failing handler is logged and never affects the publisher.
"""

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

CLAIM_CREATED = "claim.created"
CLAIM_STATUS_CHANGED = "claim.status_changed"
INVOICE_GENERATED = "invoice.generated"
INVOICE_LOCKED = "invoice.locked"
CLAIM_SUBMITTED = "claim.submitted"
SUBMISSION_FAILED = "submission.failed"
BATCH_SUBMITTED = "batch.submitted"
WORKFLOW_COMPLETED = "workflow.completed"
WORKFLOW_FAILED = "workflow.failed"


@dataclass(frozen=True)
class DomainEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Fan-out of domain events to subscribed handlers."""

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, name: str, handler: EventHandler) -> None:
        self._handlers[name].append(handler)

    def unsubscribe(self, name: str, handler: EventHandler) -> None:
        if handler in self._handlers.get(name, []):
            self._handlers[name].remove(handler)

    async def publish(self, name: str, **payload: Any) -> DomainEvent:
        event = DomainEvent(name=name, payload=payload)
        for handler in list(self._handlers.get(name, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event handler error for {name}: {e}")
        return event
