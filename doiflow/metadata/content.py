"""Content items as supplied by the content management system."""

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class ContentItemNotFoundError(Exception):
    """Raised when a content item does not exist."""
    pass


@dataclass
class Author:
    """An author of a content item."""
    name: str
    given_name: str = ""
    family_name: str = ""
    orcid: str = ""
    affiliations: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Author':
        """Create instance from dictionary."""
        return cls(
            name=data.get('name', ''),
            given_name=data.get('given_name', ''),
            family_name=data.get('family_name', ''),
            orcid=data.get('orcid', ''),
            affiliations=list(data.get('affiliations', []))
        )


@dataclass
class Translation:
    """A translated version of a content item that has its own DOI."""
    doi: str
    title: str = ""
    language: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Translation':
        """Create instance from dictionary."""
        return cls(
            doi=data.get('doi', ''),
            title=data.get('title', ''),
            language=data.get('language', '')
        )


@dataclass
class ContentItem:
    """
    Attributes of a content item relevant for DOI metadata.

    Status follows the usual CMS convention: only items with status
    "publish" have publication and modification dates in their metadata.
    """
    item_id: Union[int, str]
    title: str
    excerpt: str = ""
    status: str = "draft"
    published: Optional[date] = None
    modified: Optional[date] = None
    slug: str = ""
    permalink: str = ""
    language: str = ""
    authors: List[Author] = field(default_factory=list)
    subjects: List[str] = field(default_factory=list)
    translations: List[Translation] = field(default_factory=list)
    replaces_doi: str = ""
    replaced_by_doi: str = ""
    version: str = ""

    @property
    def is_published(self) -> bool:
        """Return True if the item is publicly published."""
        return self.status == "publish"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContentItem':
        """
        Create instance from dictionary.

        Dates are expected as ISO strings (YYYY-MM-DD).
        """
        return cls(
            item_id=data['item_id'],
            title=data.get('title', ''),
            excerpt=data.get('excerpt', ''),
            status=data.get('status', 'draft'),
            published=_parse_date(data.get('published')),
            modified=_parse_date(data.get('modified')),
            slug=data.get('slug', ''),
            permalink=data.get('permalink', ''),
            language=data.get('language', ''),
            authors=[Author.from_dict(a) for a in data.get('authors', [])],
            subjects=list(data.get('subjects', [])),
            translations=[Translation.from_dict(t) for t in data.get('translations', [])],
            replaces_doi=data.get('replaces_doi', ''),
            replaced_by_doi=data.get('replaced_by_doi', ''),
            version=str(data.get('version', ''))
        )


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value[:10])


class ContentSource:
    """Interface for looking up content items."""

    def get_item(self, item_id: Union[int, str]) -> ContentItem:
        """
        Return the current state of a content item.

        Raises:
            ContentItemNotFoundError: If the item does not exist
        """
        raise NotImplementedError()


class InMemoryContentSource(ContentSource):
    """Content source backed by a dictionary."""

    def __init__(self, items: Optional[List[ContentItem]] = None):
        self.items: Dict[str, ContentItem] = {}
        for item in items or []:
            self.add_item(item)

    def add_item(self, item: ContentItem):
        """Add or replace a content item."""
        self.items[str(item.item_id)] = item

    def get_item(self, item_id: Union[int, str]) -> ContentItem:
        try:
            return self.items[str(item_id)]
        except KeyError:
            raise ContentItemNotFoundError(f"Content item {item_id} not found")


class JSONContentSource(InMemoryContentSource):
    """Content source loaded from a JSON file containing a list of items."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        entries = data.get('items', []) if isinstance(data, dict) else data
        super().__init__([ContentItem.from_dict(entry) for entry in entries])
        logger.info(f"Loaded {len(self.items)} content items from {self.path}")
