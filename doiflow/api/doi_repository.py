"""DataCite repository client for fetching, creating, updating and deleting DOIs."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth

from doiflow.utils.config import ServiceConfig
from doiflow.utils.metadata_helpers import format_iso_date


logger = logging.getLogger(__name__)


class DOIState(str, Enum):
    """Lifecycle states of a DataCite DOI."""
    DRAFT = "draft"
    REGISTERED = "registered"
    FINDABLE = "findable"


class StateEvent(str, Enum):
    """Events accepted by DataCite to move a DOI between states."""
    REGISTER = "register"
    PUBLISH = "publish"
    HIDE = "hide"


class DOIRepositoryError(Exception):
    """
    Base exception for DataCite repository errors.

    Attributes:
        message: Human readable error message
        http_code: HTTP status of the failed request (500 for transport failures)
        doi: The DOI the request was about (empty string for create)
    """

    def __init__(self, message: str, http_code: int = 0, doi: str = ""):
        super().__init__(message)
        self.message = message
        self.http_code = http_code
        self.doi = doi or ""


class AuthenticationError(DOIRepositoryError):
    """Raised when the repository rejects the credentials (HTTP 401)."""
    pass


class NetworkError(DOIRepositoryError):
    """Raised when the repository cannot be reached."""
    pass


class ResponseDecodeError(DOIRepositoryError):
    """Raised when a response body is not valid DOI JSON."""
    pass


@dataclass
class Tombstone:
    """Soft-deletion marker DataCite keeps for removed DOIs (HTTP 410)."""
    deleted_at: str
    raw: Dict[str, Any] = field(default_factory=dict)

    def formatted_deleted_at(self, fmt: str = "%B %d, %Y") -> str:
        """Return the deletion date formatted for display."""
        return format_iso_date(self.deleted_at, fmt)


@dataclass
class DoiRecord:
    """A DOI record as returned by the DataCite REST API."""
    doi: str
    state: Optional[str]
    attributes: Dict[str, Any] = field(default_factory=dict)
    tombstone: Optional[Tombstone] = None
    raw_response: Optional[Dict[str, Any]] = None

    @property
    def is_tombstoned(self) -> bool:
        """Return True if the record was removed on the service side."""
        return self.tombstone is not None

    @classmethod
    def from_response(
        cls,
        data: Dict[str, Any],
        doi: str = "",
        default_state: Optional[str] = DOIState.DRAFT.value
    ) -> 'DoiRecord':
        """
        Build a record from a JSON:API response body.

        A tombstone body may come without a "data" object; the record then
        carries the requested DOI, no attributes and the tombstone.

        Args:
            data: Decoded response ({"data": {"id", "attributes"}, "meta": {...}})
            doi: The requested DOI, used when the body does not name one
            default_state: State to assume when the body has none

        Returns:
            DoiRecord instance

        Raises:
            ValueError: If the body has neither a "data" object nor a tombstone
        """
        tombstone = None
        meta = data.get('meta') or {}
        tombstone_data = meta.get('tombstone') if isinstance(meta, dict) else None
        if tombstone_data:
            tombstone = Tombstone(
                deleted_at=tombstone_data.get('deletedAt', ''),
                raw=tombstone_data
            )

        body = data.get('data')
        if not isinstance(body, dict):
            if tombstone is None:
                raise ValueError("Response has no 'data' object")
            body = {}

        attributes = body.get('attributes') or {}
        state = attributes.get('state') or default_state

        return cls(
            doi=body.get('id') or attributes.get('doi') or doi,
            state=state,
            attributes=attributes,
            tombstone=tombstone,
            raw_response=data
        )


@dataclass
class FetchResult:
    """Outcome of a best-effort DOI fetch that must not abort the caller."""
    record: Optional[DoiRecord] = None
    error: Optional[DOIRepositoryError] = None

    @property
    def is_success(self) -> bool:
        """Return True if the record was fetched."""
        return self.error is None and self.record is not None

    @property
    def attributes(self) -> Dict[str, Any]:
        """Return the record attributes, or an empty dict if the fetch failed."""
        if self.is_success:
            return self.record.attributes
        return {}


class DOIRepositoryClient:
    """
    Client for the DOI endpoint of the DataCite REST API.

    The client is stateless: every call is a single synchronous request
    without retries. Errors are raised as DOIRepositoryError subclasses.
    """

    JSON_API = "application/vnd.api+json"

    def __init__(self, config: ServiceConfig):
        """
        Initialize the repository client.

        Args:
            config: Service URL (the /dois endpoint) and credentials
        """
        self.service_url = config.service_url
        self.client_id = config.client_id
        self.timeout = config.timeout
        self.auth = HTTPBasicAuth(config.client_id, config.client_secret)

        logger.info(f"DOI repository client initialized for {self.service_url}")

    def get_doi(self, doi: str) -> DoiRecord:
        """
        Fetch a DOI record.

        A 410 response is not an error: the record exists but has been
        removed, and the body carries the tombstone.

        Args:
            doi: The DOI, starting with the prefix (e.g. "10.1234/ab12")

        Returns:
            DoiRecord including the tombstone if present

        Raises:
            AuthenticationError: If credentials are invalid
            NetworkError: If the service cannot be reached
            ResponseDecodeError: If the body cannot be decoded
            DOIRepositoryError: For any other status
        """
        logger.info(f"Fetching metadata for DOI: {doi}")

        response = self._request(
            'GET',
            f"{self.service_url}/{doi}",
            doi,
            headers={"Accept": self.JSON_API}
        )

        if response.status_code not in (200, 410):
            error_msg = f"DOI-Metadaten konnten nicht abgerufen werden: [{response.status_code}] {response.text}"
            logger.error(f"API error fetching DOI {doi}: {response.status_code} - {response.text}")
            raise DOIRepositoryError(error_msg, response.status_code, doi)

        record = self._decode(response, doi)
        if record.is_tombstoned:
            logger.warning(f"DOI {doi} is tombstoned (deleted at {record.tombstone.deleted_at})")
        else:
            logger.info(f"Successfully fetched metadata for DOI {doi}")
        return record

    def try_get_doi(self, doi: str) -> FetchResult:
        """
        Fetch a DOI record without raising.

        Returns:
            FetchResult holding either the record or the error
        """
        try:
            return FetchResult(record=self.get_doi(doi))
        except DOIRepositoryError as e:
            logger.warning(f"Best-effort fetch of DOI {doi} failed: {e.message}")
            return FetchResult(error=e)

    def create_doi(self, payload: Dict[str, Any]) -> DoiRecord:
        """
        Create a DOI. DataCite assigns the suffix and the draft state.

        Args:
            payload: JSON:API body with attributes including "prefix"

        Returns:
            DoiRecord with the server-assigned DOI

        Raises:
            DOIRepositoryError: If the service does not answer 201
        """
        logger.info("Creating new DOI")

        response = self._request(
            'POST',
            self.service_url,
            "",
            json=payload,
            headers={"Accept": self.JSON_API, "Content-Type": self.JSON_API}
        )

        if response.status_code != 201:
            error_msg = f"Fehler beim Erstellen der DOI [{response.status_code}]: {response.text}"
            logger.error(f"Unexpected status code {response.status_code} creating DOI: {response.text}")
            raise DOIRepositoryError(error_msg, response.status_code, "")

        record = self._decode(response, "")
        logger.info(f"DOI {record.doi} created in state '{record.state}'")
        return record

    def update_doi(self, doi: str, payload: Dict[str, Any]) -> DoiRecord:
        """
        Update a DOI's metadata, or trigger a state event.

        Args:
            doi: The DOI to update
            payload: JSON:API body with either the full attributes or
                a single "event" attribute

        Returns:
            The updated DoiRecord (state is None if the response has none)

        Raises:
            DOIRepositoryError: If the service does not answer 200
        """
        logger.info(f"Updating DOI: {doi}")

        response = self._request(
            'PUT',
            f"{self.service_url}/{doi}",
            doi,
            json=payload,
            headers={"Accept": self.JSON_API, "Content-Type": self.JSON_API}
        )

        if response.status_code != 200:
            error_msg = f"Fehler beim Aktualisieren der DOI {doi} [{response.status_code}]: {response.text}"
            logger.error(f"Unexpected status code {response.status_code} for DOI {doi}: {response.text}")
            raise DOIRepositoryError(error_msg, response.status_code, doi)

        record = self._decode(response, doi, default_state=None)
        logger.info(f"DOI {doi} updated, state is '{record.state}'")
        return record

    def delete_doi(self, doi: str) -> bool:
        """
        Delete a DOI. DataCite only allows this for drafts.

        Returns:
            True if the DOI was deleted

        Raises:
            DOIRepositoryError: If the service does not answer 204
        """
        logger.info(f"Deleting DOI: {doi}")

        response = self._request('DELETE', f"{self.service_url}/{doi}", doi)

        if response.status_code != 204:
            error_msg = f"Fehler beim Löschen der DOI {doi} [{response.status_code}]: {response.text}"
            logger.error(f"Unexpected status code {response.status_code} deleting DOI {doi}: {response.text}")
            raise DOIRepositoryError(error_msg, response.status_code, doi)

        logger.info(f"DOI {doi} deleted")
        return True

    @staticmethod
    def build_payload(attributes: Dict[str, Any], target: Optional[str] = None) -> Dict[str, Any]:
        """
        Wrap attributes into a JSON:API request body.

        Args:
            attributes: DOI attributes (metadata, prefix or event)
            target: Landing page URL, sent as meta.target

        Returns:
            Request body dictionary
        """
        payload = {
            "data": {
                "type": "dois",
                "attributes": dict(attributes)
            }
        }
        if target:
            payload["meta"] = {"target": target}
        return payload

    def _request(self, method: str, url: str, doi: str, **kwargs) -> requests.Response:
        """
        Send a request and translate transport and authentication failures.

        Raises:
            NetworkError: On timeout or connection failure
            AuthenticationError: On HTTP 401, before any other status check
        """
        try:
            response = requests.request(method, url, auth=self.auth, timeout=self.timeout, **kwargs)

        except requests.exceptions.Timeout:
            error_msg = f"Zeitüberschreitung bei der Anfrage an den DOI-Dienst: {url}"
            logger.error(f"Timeout during {method} {url}")
            raise NetworkError(error_msg, 500, doi)

        except requests.exceptions.ConnectionError as e:
            error_msg = f"Verbindung zum DOI-Dienst fehlgeschlagen: {str(e)}. Bitte prüfe die Service-URL."
            logger.error(f"Connection error during {method} {url}: {e}")
            raise NetworkError(error_msg, 500, doi)

        except requests.exceptions.RequestException as e:
            error_msg = f"Netzwerkfehler bei der Kommunikation mit dem DOI-Dienst: {str(e)}"
            logger.error(f"Request exception during {method} {url}: {e}")
            raise NetworkError(error_msg, 500, doi)

        if response.status_code == 401:
            error_msg = "Authentifizierung fehlgeschlagen [401]. Bitte überprüfe Client-ID und Passwort."
            logger.error(f"Authentication failed for {method} {url}")
            raise AuthenticationError(error_msg, 401, doi)

        return response

    def _decode(
        self,
        response: requests.Response,
        doi: str,
        default_state: Optional[str] = DOIState.DRAFT.value
    ) -> DoiRecord:
        """Decode a response body into a DoiRecord."""
        try:
            data = response.json()
        except ValueError as e:  # json.JSONDecodeError is a subclass of ValueError
            logger.error(f"Invalid JSON response for DOI {doi or '(new)'}: {e}")
            raise ResponseDecodeError("DOI-Metadaten konnten nicht dekodiert werden.", 400, doi)

        if not data or not isinstance(data, dict):
            logger.error(f"Empty response body for DOI {doi or '(new)'}")
            raise ResponseDecodeError("DOI-Metadaten konnten nicht dekodiert werden.", 400, doi)

        try:
            return DoiRecord.from_response(data, doi, default_state)
        except ValueError as e:
            logger.error(f"Unexpected response structure for DOI {doi or '(new)'}: {e}")
            raise ResponseDecodeError("DOI-Metadaten konnten nicht dekodiert werden.", 400, doi)
