"""
Lifecycle events fired by the DOI lifecycle manager.

Each event has a typed payload dataclass and its own EventSignal. Listeners
connect to a signal and are called synchronously, in connection order, when
the manager emits it. Exceptions raised by listeners propagate to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


ItemId = Union[int, str]


@dataclass
class DOICreatedEvent:
    doi: str
    item_id: ItemId
    metadata: Dict[str, Any]
    state: str


@dataclass
class DOIUpdatedEvent:
    doi: str
    item_id: ItemId
    old_metadata: Dict[str, Any]
    new_metadata: Dict[str, Any]
    changed_fields: List[str] = field(default_factory=list)


@dataclass
class DOIDeletedEvent:
    doi: str
    item_id: ItemId
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DOIStateChangedEvent:
    doi: str
    item_id: ItemId
    old_state: str
    new_state: str
    event: str


@dataclass
class BeforeOperationEvent:
    """Fired before a mutating operation (doi is empty for create)."""
    operation: str
    doi: str
    item_id: ItemId
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AfterOperationEvent:
    """Fired after a mutating operation, successful or not."""
    operation: str
    doi: str
    item_id: ItemId
    success: bool
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass
class APIErrorEvent:
    operation: str
    doi: str
    item_id: ItemId
    message: str
    http_code: int = 0


class EventSignal:
    """A named event that listeners can connect to."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Callable[[Any], None]] = []

    def connect(self, listener: Callable[[Any], None]) -> None:
        """Register a listener; connecting the same listener twice has no effect."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def disconnect(self, listener: Callable[[Any], None]) -> bool:
        """
        Remove a listener.

        Returns:
            True if the listener was connected
        """
        if listener in self._listeners:
            self._listeners.remove(listener)
            return True
        return False

    def emit(self, payload: Any) -> None:
        """Call every connected listener with the payload."""
        logger.debug(f"Emitting {self.name} to {len(self._listeners)} listener(s)")
        for listener in list(self._listeners):
            listener(payload)

    def __len__(self) -> int:
        return len(self._listeners)


class DOIEvents:
    """Registry of the lifecycle event signals owned by one lifecycle manager."""

    def __init__(self):
        self.doi_created = EventSignal('doi_created')
        self.doi_updated = EventSignal('doi_updated')
        self.doi_deleted = EventSignal('doi_deleted')
        self.doi_state_changed = EventSignal('doi_state_changed')
        self.before_operation = EventSignal('before_operation')
        self.after_operation = EventSignal('after_operation')
        self.api_error = EventSignal('api_error')

    @property
    def signals(self) -> List[EventSignal]:
        """All signals of the registry."""
        return [
            self.doi_created,
            self.doi_updated,
            self.doi_deleted,
            self.doi_state_changed,
            self.before_operation,
            self.after_operation,
            self.api_error,
        ]

    def connect_all(self, listener: Callable[[Any], None]) -> None:
        """Connect one listener to every signal."""
        for signal in self.signals:
            signal.connect(listener)


def attach_audit_logger(events: DOIEvents, audit_logger: Optional[logging.Logger] = None) -> Callable[[Any], None]:
    """
    Write one log line for every lifecycle event.

    Args:
        events: The registry to listen on
        audit_logger: Logger to write to (default: "doiflow.audit")

    Returns:
        The connected listener, for later disconnection
    """
    target = audit_logger or logging.getLogger("doiflow.audit")

    def log_event(payload: Any) -> None:
        if isinstance(payload, APIErrorEvent):
            target.warning(
                f"api_error: operation={payload.operation} doi={payload.doi or '-'} "
                f"item={payload.item_id} code={payload.http_code} message={payload.message}"
            )
        elif isinstance(payload, DOIStateChangedEvent):
            target.info(
                f"doi_state_changed: doi={payload.doi} item={payload.item_id} "
                f"{payload.old_state} -> {payload.new_state} (event={payload.event})"
            )
        elif isinstance(payload, DOIUpdatedEvent):
            target.info(
                f"doi_updated: doi={payload.doi} item={payload.item_id} "
                f"changed={', '.join(payload.changed_fields) or '-'}"
            )
        elif isinstance(payload, (BeforeOperationEvent, AfterOperationEvent)):
            status = ""
            if isinstance(payload, AfterOperationEvent):
                status = " success" if payload.success else " failed"
            kind = "before_operation" if isinstance(payload, BeforeOperationEvent) else "after_operation"
            target.info(f"{kind}: operation={payload.operation} doi={payload.doi or '-'} item={payload.item_id}{status}")
        else:
            target.info(f"{type(payload).__name__}: doi={payload.doi} item={payload.item_id}")

    events.connect_all(log_event)
    return log_event
