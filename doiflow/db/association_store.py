"""
Storage for the link between content items and their DOIs.

The stored state is a local cache of the remote DOI state. Stores are simple
last-writer-wins records keyed by content item id.
"""

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)


ItemId = Union[int, str]


class AssociationStoreError(Exception):
    """Raised when associations cannot be loaded or saved."""
    pass


@dataclass
class LocalAssociation:
    """DOI linkage of one content item."""
    item_id: ItemId
    doi: Optional[str] = None
    state: Optional[str] = None

    @property
    def has_doi(self) -> bool:
        """Return True if a DOI is associated with the item."""
        return bool(self.doi)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'LocalAssociation':
        """Create instance from dictionary."""
        return cls(**data)


class AssociationStore:
    """Interface for association storage backends."""

    def get(self, item_id: ItemId) -> LocalAssociation:
        """Return the association for an item (without DOI if none is stored)."""
        raise NotImplementedError()

    def set(self, item_id: ItemId, doi: str, state: str) -> LocalAssociation:
        """Store DOI and state for an item."""
        raise NotImplementedError()

    def clear(self, item_id: ItemId) -> None:
        """Remove DOI and state for an item."""
        raise NotImplementedError()


class InMemoryAssociationStore(AssociationStore):
    """Association store kept in a dictionary."""

    def __init__(self):
        self.associations: Dict[str, LocalAssociation] = {}

    def get(self, item_id: ItemId) -> LocalAssociation:
        association = self.associations.get(str(item_id))
        if association is None:
            return LocalAssociation(item_id=item_id)
        return LocalAssociation(item_id=association.item_id, doi=association.doi, state=association.state)

    def set(self, item_id: ItemId, doi: str, state: str) -> LocalAssociation:
        association = LocalAssociation(item_id=item_id, doi=doi, state=state)
        self.associations[str(item_id)] = association
        logger.debug(f"Association stored: item {item_id} -> {doi} ({state})")
        return association

    def clear(self, item_id: ItemId) -> None:
        self.associations.pop(str(item_id), None)
        logger.debug(f"Association cleared for item {item_id}")


class JSONAssociationStore(InMemoryAssociationStore):
    """
    Association store persisted to a JSON file.

    The whole file is rewritten after every change.
    """

    def __init__(self, path: Union[str, Path]):
        """
        Initialize the store and load existing associations.

        Args:
            path: Location of the JSON file (created on first write)

        Raises:
            AssociationStoreError: If the file exists but cannot be read
        """
        super().__init__()
        self.path = Path(path)
        self._load()
        logger.info(f"Association store loaded with {len(self.associations)} entries from {self.path}")

    def set(self, item_id: ItemId, doi: str, state: str) -> LocalAssociation:
        association = super().set(item_id, doi, state)
        self._save()
        return association

    def clear(self, item_id: ItemId) -> None:
        super().clear(item_id)
        self._save()

    def _load(self):
        """Load associations from the JSON file."""
        if not self.path.exists():
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupted association file {self.path}: {e}")
            raise AssociationStoreError(f"Corrupted association file: {str(e)}")
        except OSError as e:
            logger.error(f"Failed to read association file {self.path}: {e}")
            raise AssociationStoreError(f"Failed to load associations: {str(e)}")

        for key, entry in data.get('associations', {}).items():
            try:
                self.associations[key] = LocalAssociation.from_dict(entry)
            except TypeError as e:
                logger.error(f"Failed to load association {key}: {e}")

    def _save(self):
        """Save associations to the JSON file."""
        data = {
            'associations': {
                key: association.to_dict()
                for key, association in self.associations.items()
            }
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Failed to write association file {self.path}: {e}")
            raise AssociationStoreError(f"Failed to save associations: {str(e)}")
