"""Assembly of candidate DataCite metadata from content items."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Union

from doiflow.db.association_store import AssociationStore
from doiflow.metadata.content import ContentItem, ContentSource
from doiflow.utils.config import ServiceConfig
from doiflow.utils.metadata_helpers import clean_text, normalize_url

logger = logging.getLogger(__name__)


RESOURCE_TYPES = {
    'ris': 'BLOG',
    'citeproc': 'webpage',
    'bibtex': 'misc',
    'schemaOrg': 'BlogPosting',
    'resourceType': 'Blog Post',
    'resourceTypeGeneral': 'Text',
}

FORMATS = ['text/html']


class MetadataAssembler:
    """
    Builds the candidate metadata record for a content item.

    The record is always assembled in full from the item's current state.
    Every key is present; list fields are empty when there is no source
    data. Only "url" is omitted, as long as no DOI is associated.
    """

    def __init__(
        self,
        content_source: ContentSource,
        associations: AssociationStore,
        config: ServiceConfig,
        default_language: str = "en"
    ):
        self.content_source = content_source
        self.associations = associations
        self.publisher = config.publisher
        self.resolver_url = config.resolver_url
        self.default_language = default_language

    def assemble(self, item_id: Union[int, str]) -> Dict[str, Any]:
        """
        Assemble the candidate metadata for a content item.

        Raises:
            ContentItemNotFoundError: If the item does not exist
        """
        item = self.content_source.get_item(item_id)

        data = {
            'titles': self.get_title_info(item),
            'descriptions': self.get_description_info(item),
            'creators': self.get_author_info(item),
            'publisher': self.publisher,
            'publicationYear': self.get_publication_year(item),
            'dates': self.get_date_info(item),
            'alternateIdentifiers': self.get_alternate_identifier_info(item),
            'formats': list(FORMATS),
            'subjects': self.get_subject_info(item),
            'types': dict(RESOURCE_TYPES),
            'language': self.get_language_code(item),
            'relatedIdentifiers': self.get_related_identifiers(item),
            'relatedItems': self.get_related_items(item),
            'version': item.version,
        }

        association = self.associations.get(item_id)
        if association.has_doi:
            data['url'] = f"{self.resolver_url}/{association.doi}"

        logger.debug(f"Assembled metadata for item {item_id}: {sorted(data.keys())}")
        return data

    def target_url(self, item_id: Union[int, str]) -> str:
        """Return the encoded landing page URL of a content item."""
        item = self.content_source.get_item(item_id)
        return normalize_url(item.permalink) if item.permalink else ""

    def get_title_info(self, item: ContentItem) -> List[Dict[str, str]]:
        title = clean_text(item.title)
        if not title:
            return []
        entry = {'title': title}
        if item.language:
            entry['lang'] = item.language
        return [entry]

    def get_description_info(self, item: ContentItem) -> List[Dict[str, str]]:
        description = clean_text(item.excerpt)
        if not description:
            return []
        entry = {'description': description}
        if item.language:
            entry['lang'] = item.language
        return [entry]

    def get_author_info(self, item: ContentItem) -> List[Dict[str, Any]]:
        """
        Build DataCite creators from the item's authors.

        When an author has no separate given/family name, the display name is
        split at the first space.
        """
        creators = []
        for author in item.authors:
            given_name, family_name = author.given_name, author.family_name
            if not given_name and not family_name:
                parts = author.name.split(' ', 1)
                given_name = parts[0]
                family_name = parts[1] if len(parts) > 1 else ''

            name_identifiers = []
            if author.orcid:
                name_identifiers.append({
                    'nameIdentifier': author.orcid,
                    'nameIdentifierScheme': 'ORCID',
                })

            creators.append({
                'nameType': 'Personal',
                'givenName': given_name,
                'familyName': family_name,
                'name': author.name,
                'nameIdentifiers': name_identifiers,
                'affiliation': [{'name': a} for a in author.affiliations],
            })
        return creators

    def get_publication_year(self, item: ContentItem) -> int:
        """Return the publication year of a published item, else the current year."""
        if item.is_published and item.published:
            return item.published.year
        return datetime.now(timezone.utc).year

    def get_date_info(self, item: ContentItem) -> List[Dict[str, str]]:
        dates = []
        if item.is_published:
            if item.published:
                dates.append({'date': item.published.isoformat(), 'dateType': 'Created'})
            if item.modified:
                dates.append({'date': item.modified.isoformat(), 'dateType': 'Updated'})
        return dates

    def get_alternate_identifier_info(self, item: ContentItem) -> List[Dict[str, str]]:
        alternates = [{
            'alternateIdentifier': str(item.item_id),
            'alternateIdentifierType': 'Post ID',
        }]
        if item.slug:
            alternates.append({
                'alternateIdentifier': item.slug,
                'alternateIdentifierType': 'Slug',
            })
        return alternates

    def get_subject_info(self, item: ContentItem) -> List[Dict[str, str]]:
        return [{'subject': subject} for subject in item.subjects if subject]

    def get_language_code(self, item: ContentItem) -> str:
        return item.language or self.default_language

    def get_related_identifiers(self, item: ContentItem) -> List[Dict[str, str]]:
        """
        Translations with a DOI and version links, as related identifiers.
        """
        related = []
        for translation in self._translations_with_doi(item):
            related.append({
                'relatedIdentifier': translation.doi,
                'relatedIdentifierType': 'DOI',
                'relationType': 'HasTranslation',
                'resourceTypeGeneral': 'Text',
            })
        if item.replaces_doi:
            related.append({
                'relatedIdentifier': item.replaces_doi,
                'relatedIdentifierType': 'DOI',
                'relationType': 'IsNewVersionOf',
                'resourceTypeGeneral': 'Text',
            })
        if item.replaced_by_doi:
            related.append({
                'relatedIdentifier': item.replaced_by_doi,
                'relatedIdentifierType': 'DOI',
                'relationType': 'IsPreviousVersionOf',
                'resourceTypeGeneral': 'Text',
            })
        return related

    def get_related_items(self, item: ContentItem) -> List[Dict[str, Any]]:
        related_items = []
        for translation in self._translations_with_doi(item):
            entry = {
                'relatedItemType': 'Text',
                'relationType': 'HasTranslation',
                'relatedItemIdentifier': {
                    'relatedItemIdentifier': translation.doi,
                    'relatedItemIdentifierType': 'DOI',
                },
                'titles': [{'title': clean_text(translation.title)}] if translation.title else [],
            }
            if translation.language:
                entry['language'] = translation.language
            related_items.append(entry)
        return related_items

    def _translations_with_doi(self, item: ContentItem):
        # Only translations that already have their own DOI can be linked
        return [t for t in item.translations if t.doi]
