"""
DOI lifecycle manager.

Orchestrates metadata assembly, change detection and repository calls for the
create / update / state change / delete actions on a content item's DOI.
The local association is only written after the remote call succeeded, and
repository errors are always turned into a failed OperationResult.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from doiflow.api.doi_repository import (
    DOIRepositoryClient,
    DOIRepositoryError,
    DOIState,
    StateEvent,
    Tombstone,
)
from doiflow.db.association_store import AssociationStore
from doiflow.lifecycle.events import (
    AfterOperationEvent,
    APIErrorEvent,
    BeforeOperationEvent,
    DOICreatedEvent,
    DOIDeletedEvent,
    DOIEvents,
    DOIStateChangedEvent,
    DOIUpdatedEvent,
)
from doiflow.metadata.assembler import MetadataAssembler
from doiflow.metadata.content import ContentSource
from doiflow.utils.config import ServiceConfig
from doiflow.utils.field_differ import DEFAULT_IGNORE_COUNT_KEYS, changed_fields

logger = logging.getLogger(__name__)


ItemId = Union[int, str]

OPERATION_GET = "get"
OPERATION_CREATE = "create"
OPERATION_UPDATE = "update"
OPERATION_STATE_CHANGE = "state_change"
OPERATION_DELETE = "delete"


@dataclass
class OperationResult:
    """
    Outcome of a lifecycle operation.

    On success, doi/state/attributes describe the DOI after the operation and
    changed_fields lists the fields where the candidate metadata still differs
    from the stored record. On failure, error and http_code are set.
    """
    operation: str
    item_id: ItemId
    doi: str = ""
    state: Optional[str] = None
    changed_fields: List[str] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)
    candidate: Dict[str, Any] = field(default_factory=dict)
    updated_fields: List[str] = field(default_factory=list)
    tombstone: Optional[Tombstone] = None
    message: str = ""
    error: Optional[str] = None
    http_code: int = 0

    @property
    def is_success(self) -> bool:
        """Return True if the operation succeeded."""
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Return the payload handed to presentation layers."""
        if not self.is_success:
            return {'message': self.error, 'httpCode': self.http_code}
        payload = {
            'doi': self.doi,
            'state': self.state,
            'changedFields': list(self.changed_fields),
            'attributes': self.attributes,
        }
        if self.tombstone is not None:
            payload['tombstone'] = {'deletedAt': self.tombstone.deleted_at}
        return payload


class DOILifecycleManager:
    """
    Implements the DOI state machine for content items.

        draft --register--> registered --publish--> findable --hide--> registered
        draft --delete--> (removed)

    Transition legality is left to DataCite: the event name is submitted and
    the state returned by the service is trusted.
    """

    def __init__(
        self,
        repository: DOIRepositoryClient,
        assembler: MetadataAssembler,
        associations: AssociationStore,
        events: Optional[DOIEvents] = None,
        prefix: str = "",
        ignore_count_keys: Iterable[str] = DEFAULT_IGNORE_COUNT_KEYS
    ):
        """
        Initialize the lifecycle manager.

        Args:
            repository: Client for the DataCite DOI endpoint
            assembler: Builds candidate metadata for content items
            associations: Local DOI linkage per content item
            events: Event registry; a new one is created if omitted
            prefix: DOI prefix used when creating DOIs
            ignore_count_keys: Diff allow-list, see field_differ.changed_fields
        """
        self.repository = repository
        self.assembler = assembler
        self.associations = associations
        self.events = events or DOIEvents()
        self.prefix = prefix
        self.ignore_count_keys = frozenset(ignore_count_keys)

    @classmethod
    def from_config(
        cls,
        config: ServiceConfig,
        content_source: ContentSource,
        associations: AssociationStore,
        events: Optional[DOIEvents] = None
    ) -> 'DOILifecycleManager':
        """Wire repository client, assembler and manager from one configuration."""
        return cls(
            repository=DOIRepositoryClient(config),
            assembler=MetadataAssembler(content_source, associations, config),
            associations=associations,
            events=events,
            prefix=config.prefix,
            ignore_count_keys=config.ignore_count_keys
        )

    def open_for_inspection(self, item_id: ItemId) -> OperationResult:
        """
        Compare the item's candidate metadata with its DOI record, if any.

        Nothing is modified, locally or remotely.
        """
        candidate = self.assembler.assemble(item_id)
        association = self.associations.get(item_id)

        if not association.has_doi:
            logger.info(f"Item {item_id} has no DOI yet, returning candidate metadata only")
            return OperationResult(
                operation=OPERATION_GET,
                item_id=item_id,
                candidate=candidate,
                attributes=candidate
            )

        doi = association.doi
        try:
            record = self.repository.get_doi(doi)
        except DOIRepositoryError as e:
            self._emit_api_error(OPERATION_GET, doi, item_id, e)
            return self._failure(OPERATION_GET, item_id, doi, e, candidate=candidate)

        changed = self._diff(record.attributes, candidate)
        logger.info(f"Inspected DOI {doi} for item {item_id}: {len(changed)} changed field(s)")
        return OperationResult(
            operation=OPERATION_GET,
            item_id=item_id,
            doi=doi,
            state=record.state,
            changed_fields=changed,
            attributes=record.attributes,
            candidate=candidate,
            tombstone=record.tombstone
        )

    def save_metadata(self, item_id: ItemId) -> OperationResult:
        """Create a DOI for the item, or update it if one is associated."""
        association = self.associations.get(item_id)
        if association.has_doi:
            return self.update_doi(item_id, association.doi)
        return self.create_doi(item_id)

    def create_doi(self, item_id: ItemId) -> OperationResult:
        """
        Register a new draft DOI for the item.

        Refuses to run if the item already has a DOI.
        """
        association = self.associations.get(item_id)
        if association.has_doi:
            error_msg = f"Für Eintrag {item_id} existiert bereits die DOI {association.doi}"
            logger.warning(f"Refusing to create a second DOI for item {item_id} (has {association.doi})")
            return OperationResult(
                operation=OPERATION_CREATE,
                item_id=item_id,
                doi=association.doi,
                error=error_msg
            )

        candidate = self.assembler.assemble(item_id)
        self.events.before_operation.emit(
            BeforeOperationEvent(OPERATION_CREATE, "", item_id, {'metadata': candidate})
        )

        attributes = {'prefix': self.prefix}
        attributes.update(candidate)
        payload = self.repository.build_payload(attributes, self.assembler.target_url(item_id))

        try:
            record = self.repository.create_doi(payload)
        except DOIRepositoryError as e:
            self._emit_api_error(OPERATION_CREATE, "", item_id, e)
            self.events.after_operation.emit(
                AfterOperationEvent(OPERATION_CREATE, "", item_id, False, {'error': e.message})
            )
            return self._failure(OPERATION_CREATE, item_id, "", e, candidate=candidate)

        self.associations.set(item_id, record.doi, record.state)

        # Nothing to compare against yet; a difference here means the payload was altered
        changed = self._diff(record.attributes, candidate)
        if changed:
            logger.warning(f"DOI {record.doi} differs from submitted metadata after create: {changed}")

        self.events.doi_created.emit(DOICreatedEvent(record.doi, item_id, record.attributes, record.state))
        self.events.after_operation.emit(
            AfterOperationEvent(OPERATION_CREATE, record.doi, item_id, True, record.attributes)
        )

        logger.info(f"Created DOI {record.doi} for item {item_id} in state '{record.state}'")
        return OperationResult(
            operation=OPERATION_CREATE,
            item_id=item_id,
            doi=record.doi,
            state=record.state,
            changed_fields=changed,
            attributes=record.attributes,
            candidate=candidate,
            tombstone=record.tombstone,
            message=f"DOI erfolgreich erstellt: {record.doi}"
        )

    def update_doi(self, item_id: ItemId, doi: Optional[str] = None) -> OperationResult:
        """
        Replace the DOI's metadata with the item's current candidate metadata.

        The existing record is fetched first for the change report; if that
        fetch fails, the update still runs and the old metadata counts as empty.

        Args:
            item_id: The content item
            doi: The DOI to update (default: the associated DOI)
        """
        association = self.associations.get(item_id)
        doi = doi or association.doi
        if not doi:
            return self._missing_doi(OPERATION_UPDATE, item_id)

        candidate = self.assembler.assemble(item_id)
        self.events.before_operation.emit(
            BeforeOperationEvent(OPERATION_UPDATE, doi, item_id, {'metadata': candidate})
        )

        existing = self.repository.try_get_doi(doi)
        if not existing.is_success:
            self._emit_api_error(OPERATION_GET, doi, item_id, existing.error)
        old_attributes = existing.attributes

        payload = self.repository.build_payload(candidate, self.assembler.target_url(item_id))

        try:
            record = self.repository.update_doi(doi, payload)
        except DOIRepositoryError as e:
            self._emit_api_error(OPERATION_UPDATE, doi, item_id, e)
            self.events.after_operation.emit(
                AfterOperationEvent(OPERATION_UPDATE, doi, item_id, False, {'error': e.message})
            )
            return self._failure(OPERATION_UPDATE, item_id, doi, e, candidate=candidate)

        # A response without state leaves the cached state untouched
        state = record.state or association.state
        self.associations.set(item_id, doi, state)

        updated = self._diff(old_attributes, candidate)
        self.events.doi_updated.emit(DOIUpdatedEvent(doi, item_id, old_attributes, record.attributes, updated))
        self.events.after_operation.emit(
            AfterOperationEvent(OPERATION_UPDATE, doi, item_id, True, record.attributes)
        )

        remaining = self._diff(record.attributes, candidate)
        if remaining:
            logger.warning(f"DOI {doi} still differs from submitted metadata after update: {remaining}")

        logger.info(f"Updated DOI {doi} for item {item_id}: {', '.join(updated) or 'no changes'}")
        return OperationResult(
            operation=OPERATION_UPDATE,
            item_id=item_id,
            doi=doi,
            state=state,
            changed_fields=remaining,
            attributes=record.attributes,
            candidate=candidate,
            updated_fields=updated,
            tombstone=record.tombstone,
            message=f"DOI-Metadaten erfolgreich aktualisiert: {doi}"
        )

    def change_state(
        self,
        item_id: ItemId,
        event: Union[StateEvent, str],
        doi: Optional[str] = None
    ) -> OperationResult:
        """
        Send a state event (register, publish or hide) for the DOI.

        Only the event is sent; the metadata is not resubmitted.

        Args:
            item_id: The content item
            event: The DataCite event name
            doi: The DOI (default: the associated DOI)
        """
        event_name = event.value if isinstance(event, StateEvent) else str(event)
        association = self.associations.get(item_id)
        doi = doi or association.doi
        if not doi:
            return self._missing_doi(OPERATION_STATE_CHANGE, item_id)

        old_state = association.state or DOIState.DRAFT.value
        self.events.before_operation.emit(
            BeforeOperationEvent(
                OPERATION_STATE_CHANGE, doi, item_id, {'event': event_name, 'old_state': old_state}
            )
        )

        payload = self.repository.build_payload({'event': event_name}, self.assembler.target_url(item_id))

        try:
            record = self.repository.update_doi(doi, payload)
        except DOIRepositoryError as e:
            self._emit_api_error(OPERATION_STATE_CHANGE, doi, item_id, e)
            self.events.after_operation.emit(
                AfterOperationEvent(OPERATION_STATE_CHANGE, doi, item_id, False, {'error': e.message})
            )
            return self._failure(OPERATION_STATE_CHANGE, item_id, doi, e)

        new_state = record.state or old_state
        self.associations.set(item_id, doi, new_state)

        if old_state != new_state:
            self.events.doi_state_changed.emit(
                DOIStateChangedEvent(doi, item_id, old_state, new_state, event_name)
            )
        self.events.after_operation.emit(
            AfterOperationEvent(
                OPERATION_STATE_CHANGE, doi, item_id, True, {'new_state': new_state, 'event': event_name}
            )
        )

        candidate = self.assembler.assemble(item_id)
        changed = self._diff(record.attributes, candidate)

        logger.info(f"DOI {doi} for item {item_id}: {old_state} -> {new_state} (event '{event_name}')")
        return OperationResult(
            operation=OPERATION_STATE_CHANGE,
            item_id=item_id,
            doi=doi,
            state=new_state,
            changed_fields=changed,
            attributes=record.attributes,
            candidate=candidate,
            tombstone=record.tombstone,
            message=f"DOI-Status erfolgreich geändert: {doi}"
        )

    def register_doi(self, item_id: ItemId, doi: Optional[str] = None) -> OperationResult:
        """Move a draft DOI to registered. Registered DOIs can no longer be deleted."""
        return self.change_state(item_id, StateEvent.REGISTER, doi)

    def publish_doi(self, item_id: ItemId, doi: Optional[str] = None) -> OperationResult:
        """Make the DOI findable."""
        return self.change_state(item_id, StateEvent.PUBLISH, doi)

    def hide_doi(self, item_id: ItemId, doi: Optional[str] = None) -> OperationResult:
        """Move a findable DOI back to registered."""
        return self.change_state(item_id, StateEvent.HIDE, doi)

    def delete_doi(self, item_id: ItemId, doi: Optional[str] = None) -> OperationResult:
        """
        Delete the DOI. DataCite only accepts this for drafts.

        The record is fetched beforehand (best effort) so the deletion event
        can carry the metadata that was removed.
        """
        doi = doi or self.associations.get(item_id).doi
        if not doi:
            return self._missing_doi(OPERATION_DELETE, item_id)

        existing = self.repository.try_get_doi(doi)
        if not existing.is_success:
            self._emit_api_error(OPERATION_GET, doi, item_id, existing.error)
        old_attributes = existing.attributes

        self.events.before_operation.emit(
            BeforeOperationEvent(OPERATION_DELETE, doi, item_id, {'metadata': old_attributes})
        )

        try:
            self.repository.delete_doi(doi)
        except DOIRepositoryError as e:
            self._emit_api_error(OPERATION_DELETE, doi, item_id, e)
            self.events.after_operation.emit(
                AfterOperationEvent(OPERATION_DELETE, doi, item_id, False, {'error': e.message})
            )
            return self._failure(OPERATION_DELETE, item_id, doi, e)

        self.associations.clear(item_id)

        self.events.doi_deleted.emit(DOIDeletedEvent(doi, item_id, old_attributes))
        self.events.after_operation.emit(
            AfterOperationEvent(OPERATION_DELETE, doi, item_id, True, {'deleted_metadata': old_attributes})
        )

        candidate = self.assembler.assemble(item_id)
        logger.info(f"Deleted DOI {doi} of item {item_id}")
        return OperationResult(
            operation=OPERATION_DELETE,
            item_id=item_id,
            doi=doi,
            attributes=old_attributes,
            candidate=candidate,
            message=f"DOI erfolgreich gelöscht: {doi}"
        )

    def _diff(self, existing: Dict[str, Any], candidate: Dict[str, Any]) -> List[str]:
        return sorted(changed_fields(existing, candidate, self.ignore_count_keys))

    def _emit_api_error(self, operation: str, doi: str, item_id: ItemId, error: DOIRepositoryError):
        self.events.api_error.emit(APIErrorEvent(operation, doi, item_id, error.message, error.http_code))

    def _failure(
        self,
        operation: str,
        item_id: ItemId,
        doi: str,
        error: DOIRepositoryError,
        candidate: Optional[Dict[str, Any]] = None
    ) -> OperationResult:
        logger.error(f"{operation} failed for item {item_id} (DOI {doi or '-'}): [{error.http_code}] {error.message}")
        return OperationResult(
            operation=operation,
            item_id=item_id,
            doi=doi,
            candidate=candidate or {},
            error=error.message,
            http_code=error.http_code
        )

    def _missing_doi(self, operation: str, item_id: ItemId) -> OperationResult:
        logger.warning(f"{operation} requested for item {item_id}, but no DOI is associated")
        return OperationResult(
            operation=operation,
            item_id=item_id,
            error=f"Für Eintrag {item_id} ist keine DOI vorhanden"
        )
