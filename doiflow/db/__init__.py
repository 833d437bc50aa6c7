"""Local storage of content item to DOI associations."""

from doiflow.db.association_store import InMemoryAssociationStore, JSONAssociationStore, LocalAssociation

__all__ = ['InMemoryAssociationStore', 'JSONAssociationStore', 'LocalAssociation']
