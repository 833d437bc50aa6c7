"""Tests for the DOI lifecycle manager."""

import json
from datetime import date
from unittest.mock import Mock

import pytest
import responses

from doiflow.api.doi_repository import StateEvent
from doiflow.db.association_store import InMemoryAssociationStore
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
from doiflow.lifecycle.manager import DOILifecycleManager, OperationResult
from doiflow.metadata.content import Author, ContentItem, InMemoryContentSource
from doiflow.utils.config import ServiceConfig


SERVICE_URL = "https://api.test.datacite.org/dois"
DOI = "10.1234/ab12"
DOI_URL = f"{SERVICE_URL}/{DOI}"

ENRICHED_TYPES = {
    "ris": "BLOG",
    "bibtex": "misc",
    "citeproc": "webpage",
    "schemaOrg": "BlogPosting",
    "resourceType": "Blog Post",
    "resourceTypeGeneral": "Text",
}


def doi_body(state, attributes=None, doi=DOI):
    """Build a DataCite response body."""
    attrs = dict(attributes or {})
    attrs.update({"doi": doi, "state": state})
    return {"data": {"id": doi, "type": "dois", "attributes": attrs}}


def echo(state, status=200):
    """
    Response callback that stores the submitted attributes like DataCite does.

    The year comes back as a string and the types are enriched.
    """
    def callback(request):
        attributes = dict(json.loads(request.body)["data"]["attributes"])
        attributes.pop("prefix", None)
        attributes.pop("event", None)
        if "publicationYear" in attributes:
            attributes["publicationYear"] = str(attributes["publicationYear"])
        attributes["types"] = dict(ENRICHED_TYPES)
        return (status, {}, json.dumps(doi_body(state, attributes)))
    return callback


class EventRecorder:
    """Collects every emitted event payload."""

    def __init__(self, events):
        self.payloads = []
        events.connect_all(self.payloads.append)

    def of_type(self, payload_type):
        return [p for p in self.payloads if isinstance(p, payload_type)]


@pytest.fixture
def config():
    """Create a test configuration."""
    return ServiceConfig(
        SERVICE_URL, "TEST.CLIENT", "test_secret",
        prefix="10.1234",
        publisher="Example Publisher"
    )


@pytest.fixture
def item():
    """A published content item."""
    return ContentItem(
        item_id=42,
        title="Report 2024",
        excerpt="Annual report",
        status="publish",
        published=date(2024, 3, 1),
        slug="report-2024",
        permalink="https://blog.example.org/report-2024/",
        language="en",
        authors=[Author(name="Ada Lovelace")]
    )


@pytest.fixture
def associations():
    """Empty association store."""
    return InMemoryAssociationStore()


@pytest.fixture
def events():
    """Event registry."""
    return DOIEvents()


@pytest.fixture
def recorder(events):
    """Records all events."""
    return EventRecorder(events)


@pytest.fixture
def manager(config, item, associations, events):
    """Lifecycle manager wired to a real repository client."""
    return DOILifecycleManager.from_config(config, InMemoryContentSource([item]), associations, events)


class TestOpenForInspection:
    """Test comparing local and remote metadata."""

    def test_without_doi(self, manager, recorder):
        """Test that an item without DOI returns its candidate metadata."""
        result = manager.open_for_inspection(42)

        assert result.is_success
        assert result.doi == ""
        assert result.attributes == result.candidate
        assert result.attributes['titles'] == [{'title': 'Report 2024', 'lang': 'en'}]
        assert recorder.payloads == []

    @responses.activate
    def test_with_doi(self, manager, associations):
        """Test that the remote record is compared with the candidate."""
        associations.set(42, DOI, "draft")
        candidate = manager.assembler.assemble(42)
        remote = dict(candidate, titles=[{'title': 'Old'}], publicationYear="2024", types=ENRICHED_TYPES)
        responses.add(responses.GET, DOI_URL, json=doi_body("draft", remote), status=200)

        result = manager.open_for_inspection(42)

        assert result.is_success
        assert result.state == "draft"
        assert result.changed_fields == ['titles']
        assert result.attributes['titles'] == [{'title': 'Old'}]
        assert len(responses.calls) == 1

    @responses.activate
    def test_tombstoned(self, manager, associations):
        """Test that a tombstoned record is reported with its deletion date."""
        associations.set(42, DOI, "registered")
        body = doi_body("registered", {"titles": [{"title": "Report 2024"}]})
        body["meta"] = {"tombstone": {"deletedAt": "2024-05-01T10:30:00Z"}}
        responses.add(responses.GET, DOI_URL, json=body, status=410)

        result = manager.open_for_inspection(42)

        assert result.is_success
        assert result.tombstone.deleted_at == "2024-05-01T10:30:00Z"
        assert result.to_dict()['tombstone'] == {'deletedAt': "2024-05-01T10:30:00Z"}

    @responses.activate
    def test_fetch_failure(self, manager, associations, recorder):
        """Test that a failed fetch is reported and emits api_error."""
        associations.set(42, DOI, "draft")
        responses.add(responses.GET, DOI_URL, body="Unauthorized", status=401)

        result = manager.open_for_inspection(42)

        assert not result.is_success
        assert result.http_code == 401
        assert result.candidate['titles'] == [{'title': 'Report 2024', 'lang': 'en'}]
        errors = recorder.of_type(APIErrorEvent)
        assert len(errors) == 1
        assert errors[0].operation == "get"
        assert errors[0].http_code == 401


class TestCreateDoi:
    """Test creating DOIs."""

    @responses.activate
    def test_create(self, manager, associations, recorder):
        """Test creating a draft DOI for an item without DOI."""
        responses.add_callback(responses.POST, SERVICE_URL, callback=echo("draft", 201))

        result = manager.create_doi(42)

        assert result.is_success
        assert result.doi == DOI
        assert result.state == "draft"
        assert result.changed_fields == []

        association = associations.get(42)
        assert association.doi == DOI
        assert association.state == "draft"

        created = recorder.of_type(DOICreatedEvent)
        assert len(created) == 1
        assert created[0].state == "draft"
        assert created[0].item_id == 42

    @responses.activate
    def test_create_payload(self, manager):
        """Test that prefix, metadata and target are submitted, without url."""
        responses.add_callback(responses.POST, SERVICE_URL, callback=echo("draft", 201))

        manager.create_doi(42)

        sent = json.loads(responses.calls[0].request.body)
        assert sent["data"]["attributes"]["prefix"] == "10.1234"
        assert sent["data"]["attributes"]["titles"] == [{'title': 'Report 2024', 'lang': 'en'}]
        assert "url" not in sent["data"]["attributes"]
        assert sent["meta"]["target"] == "https://blog.example.org/report-2024/"

    @responses.activate
    def test_create_event_order(self, manager, recorder):
        """Test the order of emitted events."""
        responses.add_callback(responses.POST, SERVICE_URL, callback=echo("draft", 201))

        manager.create_doi(42)

        assert [type(p) for p in recorder.payloads] == [
            BeforeOperationEvent,
            DOICreatedEvent,
            AfterOperationEvent,
        ]
        assert recorder.payloads[0].doi == ""
        assert recorder.payloads[-1].success is True

    @responses.activate
    def test_create_failure(self, manager, associations, recorder):
        """Test that a rejected create leaves the item without DOI."""
        responses.add(responses.POST, SERVICE_URL, body="Unprocessable", status=422)

        result = manager.create_doi(42)

        assert not result.is_success
        assert result.http_code == 422
        assert result.to_dict() == {'message': result.error, 'httpCode': 422}
        assert not associations.get(42).has_doi
        assert recorder.of_type(DOICreatedEvent) == []
        errors = recorder.of_type(APIErrorEvent)
        assert len(errors) == 1
        assert errors[0].operation == "create"
        assert errors[0].doi == ""
        assert recorder.of_type(AfterOperationEvent)[0].success is False

    @responses.activate
    def test_create_network_failure(self, manager, associations):
        """Test that transport failures are reported with code 500."""
        result = manager.create_doi(42)

        assert not result.is_success
        assert result.http_code == 500
        assert not associations.get(42).has_doi

    def test_create_with_existing_doi(self, manager, associations, recorder):
        """Test that a second DOI is not created."""
        associations.set(42, DOI, "draft")

        result = manager.create_doi(42)

        assert not result.is_success
        assert result.doi == DOI
        assert recorder.payloads == []


class TestUpdateDoi:
    """Test updating DOI metadata."""

    @responses.activate
    def test_update_changed_fields(self, manager, associations, recorder):
        """Test the changed fields before and after an update."""
        associations.set(42, DOI, "draft")
        candidate = manager.assembler.assemble(42)
        remote = dict(candidate, titles=[{'title': 'Old'}], types=ENRICHED_TYPES)
        responses.add(responses.GET, DOI_URL, json=doi_body("draft", remote), status=200)
        responses.add_callback(responses.PUT, DOI_URL, callback=echo("draft"))

        result = manager.update_doi(42)

        assert result.is_success
        assert result.updated_fields == ['titles']
        assert result.changed_fields == []
        assert result.attributes['titles'] == [{'title': 'Report 2024', 'lang': 'en'}]

        updated = recorder.of_type(DOIUpdatedEvent)
        assert len(updated) == 1
        assert updated[0].changed_fields == ['titles']
        assert updated[0].old_metadata['titles'] == [{'title': 'Old'}]

    @responses.activate
    def test_update_submits_full_candidate(self, manager, associations):
        """Test that all candidate fields including url are sent."""
        associations.set(42, DOI, "draft")
        responses.add(responses.GET, DOI_URL, json=doi_body("draft"), status=200)
        responses.add_callback(responses.PUT, DOI_URL, callback=echo("draft"))

        manager.update_doi(42)

        sent = json.loads(responses.calls[1].request.body)
        assert sent["data"]["attributes"] == manager.assembler.assemble(42)
        assert sent["data"]["attributes"]["url"] == f"{SERVICE_URL}/{DOI}"

    @responses.activate
    def test_update_keeps_state(self, manager, associations):
        """Test that the association state follows the returned record."""
        associations.set(42, DOI, "findable")
        responses.add(responses.GET, DOI_URL, json=doi_body("findable"), status=200)
        responses.add_callback(responses.PUT, DOI_URL, callback=echo("findable"))

        result = manager.update_doi(42)

        assert result.state == "findable"
        assert associations.get(42).state == "findable"

    @responses.activate
    def test_update_response_without_state(self, manager, associations):
        """Test that an update response without state keeps the cached state."""
        associations.set(42, DOI, "findable")
        responses.add(responses.GET, DOI_URL, json=doi_body("findable"), status=200)
        responses.add(
            responses.PUT,
            DOI_URL,
            json={"data": {"id": DOI, "attributes": {"doi": DOI}}},
            status=200
        )

        result = manager.update_doi(42)

        assert result.is_success
        assert result.state == "findable"
        assert associations.get(42).state == "findable"

    @responses.activate
    def test_update_when_fetch_fails(self, manager, associations, recorder):
        """Test that the update runs even if the existing record cannot be fetched."""
        associations.set(42, DOI, "draft")
        responses.add(responses.GET, DOI_URL, body="Server Error", status=500)
        responses.add_callback(responses.PUT, DOI_URL, callback=echo("draft"))

        result = manager.update_doi(42)

        assert result.is_success
        assert set(result.updated_fields) == set(manager.assembler.assemble(42).keys())

        errors = recorder.of_type(APIErrorEvent)
        assert [e.operation for e in errors] == ["get"]
        assert recorder.of_type(DOIUpdatedEvent)[0].old_metadata == {}

    @responses.activate
    def test_update_failure(self, manager, associations, recorder):
        """Test that a rejected update leaves the association unchanged."""
        associations.set(42, DOI, "draft")
        responses.add(responses.GET, DOI_URL, json=doi_body("draft"), status=200)
        responses.add(responses.PUT, DOI_URL, body="Forbidden", status=403)

        result = manager.update_doi(42)

        assert not result.is_success
        assert result.http_code == 403
        assert associations.get(42).state == "draft"
        assert recorder.of_type(DOIUpdatedEvent) == []
        assert [e.operation for e in recorder.of_type(APIErrorEvent)] == ["update"]

    def test_update_without_doi(self, manager, recorder):
        """Test that updating an item without DOI fails without any request."""
        result = manager.update_doi(42)

        assert not result.is_success
        assert result.http_code == 0
        assert recorder.payloads == []


class TestSaveMetadata:
    """Test the create-or-update entry point."""

    @responses.activate
    def test_save_creates(self, manager):
        """Test that save creates a DOI for an item without DOI."""
        responses.add_callback(responses.POST, SERVICE_URL, callback=echo("draft", 201))

        result = manager.save_metadata(42)

        assert result.operation == "create"
        assert result.is_success

    @responses.activate
    def test_save_updates(self, manager, associations):
        """Test that save updates an existing DOI."""
        associations.set(42, DOI, "draft")
        responses.add(responses.GET, DOI_URL, json=doi_body("draft"), status=200)
        responses.add_callback(responses.PUT, DOI_URL, callback=echo("draft"))

        result = manager.save_metadata(42)

        assert result.operation == "update"
        assert result.is_success


class TestChangeState:
    """Test state transitions."""

    @responses.activate
    def test_publish(self, manager, associations, recorder):
        """Test publishing a registered DOI."""
        associations.set(42, DOI, "registered")
        responses.add(responses.PUT, DOI_URL, json=doi_body("findable"), status=200)

        result = manager.publish_doi(42)

        assert result.is_success
        assert result.state == "findable"
        assert associations.get(42).state == "findable"

        changes = recorder.of_type(DOIStateChangedEvent)
        assert len(changes) == 1
        assert (changes[0].old_state, changes[0].new_state, changes[0].event) == (
            "registered", "findable", "publish"
        )

    @responses.activate
    def test_only_event_is_sent(self, manager, associations):
        """Test that the metadata is not resubmitted with a state event."""
        associations.set(42, DOI, "draft")
        responses.add(responses.PUT, DOI_URL, json=doi_body("registered"), status=200)

        manager.register_doi(42)

        sent = json.loads(responses.calls[0].request.body)
        assert sent["data"]["attributes"] == {"event": "register"}
        assert sent["meta"]["target"] == "https://blog.example.org/report-2024/"

    @responses.activate
    def test_register(self, manager, associations, recorder):
        """Test registering a draft DOI."""
        associations.set(42, DOI, "draft")
        responses.add(responses.PUT, DOI_URL, json=doi_body("registered"), status=200)

        result = manager.register_doi(42)

        assert result.state == "registered"
        assert associations.get(42).state == "registered"

        changes = recorder.of_type(DOIStateChangedEvent)
        assert len(changes) == 1
        assert (changes[0].old_state, changes[0].new_state, changes[0].event) == (
            "draft", "registered", "register"
        )

    @responses.activate
    def test_hide(self, manager, associations, recorder):
        """Test hiding a findable DOI."""
        associations.set(42, DOI, "findable")
        responses.add(responses.PUT, DOI_URL, json=doi_body("registered"), status=200)

        result = manager.hide_doi(42)

        assert result.state == "registered"
        assert associations.get(42).state == "registered"
        assert json.loads(responses.calls[0].request.body)["data"]["attributes"] == {"event": "hide"}

        changes = recorder.of_type(DOIStateChangedEvent)
        assert len(changes) == 1
        assert (changes[0].old_state, changes[0].new_state, changes[0].event) == (
            "findable", "registered", "hide"
        )

    @responses.activate
    def test_response_without_state_keeps_cached_state(self, manager, associations, recorder):
        """Test that a state event response without state does not reset the DOI to draft."""
        associations.set(42, DOI, "findable")
        responses.add(
            responses.PUT,
            DOI_URL,
            json={"data": {"id": DOI, "attributes": {"doi": DOI}}},
            status=200
        )

        result = manager.hide_doi(42)

        assert result.is_success
        assert result.state == "findable"
        assert associations.get(42).state == "findable"
        assert recorder.of_type(DOIStateChangedEvent) == []

    @responses.activate
    def test_unchanged_state_no_event(self, manager, associations, recorder):
        """Test that no state change event fires when the state stays the same."""
        associations.set(42, DOI, "findable")
        responses.add(responses.PUT, DOI_URL, json=doi_body("findable"), status=200)

        result = manager.change_state(42, StateEvent.PUBLISH)

        assert result.is_success
        assert recorder.of_type(DOIStateChangedEvent) == []
        after = recorder.of_type(AfterOperationEvent)[0]
        assert after.result == {'new_state': 'findable', 'event': 'publish'}

    @responses.activate
    def test_state_change_rejected(self, manager, associations, recorder):
        """Test that a rejected transition keeps the local state."""
        associations.set(42, DOI, "draft")
        responses.add(responses.PUT, DOI_URL, body="Invalid transition", status=422)

        result = manager.change_state(42, "hide")

        assert not result.is_success
        assert result.http_code == 422
        assert associations.get(42).state == "draft"
        assert recorder.of_type(DOIStateChangedEvent) == []
        assert [e.operation for e in recorder.of_type(APIErrorEvent)] == ["state_change"]

    def test_state_change_without_doi(self, manager, recorder):
        """Test that a state change without DOI fails without any request."""
        result = manager.register_doi(42)

        assert not result.is_success
        assert recorder.payloads == []


class TestDeleteDoi:
    """Test deleting DOIs."""

    @responses.activate
    def test_delete_draft(self, manager, associations, recorder):
        """Test deleting a draft DOI."""
        associations.set(42, DOI, "draft")
        responses.add(responses.GET, DOI_URL, json=doi_body("draft", {"titles": [{"title": "Report 2024"}]}))
        responses.add(responses.DELETE, DOI_URL, status=204)

        result = manager.delete_doi(42)

        assert result.is_success
        assert result.attributes["titles"] == [{"title": "Report 2024"}]
        assert not associations.get(42).has_doi

        deleted = recorder.of_type(DOIDeletedEvent)
        assert len(deleted) == 1
        assert deleted[0].metadata["state"] == "draft"
        after = recorder.of_type(AfterOperationEvent)[0]
        assert after.success is True
        assert "deleted_metadata" in after.result

    @responses.activate
    def test_delete_rejected(self, manager, associations, recorder):
        """Test that a rejected delete keeps the association and fires api_error."""
        associations.set(42, DOI, "findable")
        responses.add(responses.GET, DOI_URL, json=doi_body("findable"))
        responses.add(
            responses.DELETE,
            DOI_URL,
            json={"errors": [{"status": "405", "title": "Method not allowed"}]},
            status=405
        )

        result = manager.delete_doi(42)

        assert not result.is_success
        assert result.http_code == 405
        association = associations.get(42)
        assert association.doi == DOI
        assert association.state == "findable"
        assert recorder.of_type(DOIDeletedEvent) == []
        errors = recorder.of_type(APIErrorEvent)
        assert [e.operation for e in errors] == ["delete"]
        assert errors[0].doi == DOI

    @responses.activate
    def test_delete_when_fetch_fails(self, manager, associations, recorder):
        """Test that delete still runs if the record cannot be fetched first."""
        associations.set(42, DOI, "draft")
        responses.add(responses.GET, DOI_URL, body="Server Error", status=500)
        responses.add(responses.DELETE, DOI_URL, status=204)

        result = manager.delete_doi(42)

        assert result.is_success
        assert recorder.of_type(DOIDeletedEvent)[0].metadata == {}
        assert [e.operation for e in recorder.of_type(APIErrorEvent)] == ["get"]

    def test_delete_without_doi(self, manager, recorder):
        """Test that deleting without DOI fails without any request."""
        result = manager.delete_doi(42)

        assert not result.is_success
        assert recorder.payloads == []


class TestListenerErrors:
    """Test behavior of failing listeners."""

    @responses.activate
    def test_listener_exception_propagates(self, manager, events, associations):
        """Test that a failing listener aborts after the association was written."""
        events.doi_created.connect(Mock(side_effect=RuntimeError("listener failed")))
        responses.add_callback(responses.POST, SERVICE_URL, callback=echo("draft", 201))

        with pytest.raises(RuntimeError):
            manager.create_doi(42)

        assert associations.get(42).doi == DOI


class TestOperationResult:
    """Test the result payload."""

    def test_success_dict(self):
        """Test the payload of a successful result."""
        result = OperationResult(
            operation="get",
            item_id=42,
            doi=DOI,
            state="draft",
            changed_fields=["titles"],
            attributes={"titles": []}
        )

        assert result.to_dict() == {
            'doi': DOI,
            'state': 'draft',
            'changedFields': ['titles'],
            'attributes': {'titles': []},
        }

    def test_failure_dict(self):
        """Test the payload of a failed result."""
        result = OperationResult(operation="create", item_id=42, error="Fehler", http_code=500)

        assert not result.is_success
        assert result.to_dict() == {'message': 'Fehler', 'httpCode': 500}
