"""Clients for the DataCite DOI registration service."""

from doiflow.api.doi_repository import (
    DOIRepositoryClient,
    DOIRepositoryError,
    AuthenticationError,
    NetworkError,
    ResponseDecodeError,
    DoiRecord,
    FetchResult,
)

__all__ = [
    'DOIRepositoryClient',
    'DOIRepositoryError',
    'AuthenticationError',
    'NetworkError',
    'ResponseDecodeError',
    'DoiRecord',
    'FetchResult',
]
