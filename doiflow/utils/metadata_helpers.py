"""Helper functions for preparing and displaying DOI metadata values."""

import html
import logging
import re
from datetime import datetime
from urllib.parse import urlparse, urlunparse, quote, unquote

logger = logging.getLogger(__name__)


_TAG_PATTERN = re.compile(r'<[^>]*>')


def clean_text(text: str) -> str:
    """
    Remove HTML tags and decode HTML entities.

    Args:
        text: Raw text, possibly containing markup (e.g. a post excerpt)

    Returns:
        Plain text with surrounding whitespace removed
    """
    if not text:
        return ""
    stripped = _TAG_PATTERN.sub('', text)
    return html.unescape(stripped).strip()


def format_iso_date(iso_date: str, fmt: str = "%B %d, %Y") -> str:
    """
    Reformat an ISO 8601 timestamp, e.g. the deletedAt value of a tombstone.

    Args:
        iso_date: Date string in ISO 8601 format ("2024-05-01T10:00:00Z")
        fmt: strftime format for the output

    Returns:
        The formatted date string

    Raises:
        ValueError: If the date string is malformed
    """
    value = iso_date.strip()
    # fromisoformat() only accepts a trailing "Z" from Python 3.11 on
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return datetime.fromisoformat(value).strftime(fmt)


def normalize_url(url: str) -> str:
    """
    Normalize and properly encode a landing page URL for DataCite.

    URLs must be encoded according to RFC 3986. Path and query are decoded
    first and then re-encoded, so already encoded input is not encoded twice.

    Args:
        url: The URL to normalize

    Returns:
        Properly encoded URL string

    Examples:
        >>> normalize_url("http://example.com/path?id=test:123")
        'http://example.com/path?id=test%3A123'

        >>> normalize_url("http://example.com/path?id=test%3A123")
        'http://example.com/path?id=test%3A123'
    """
    try:
        parsed = urlparse(url)

        decoded_query = unquote(parsed.query) if parsed.query else ''
        decoded_path = unquote(parsed.path) if parsed.path else ''

        # '=' and '&' separate query parameters, '+' encodes spaces
        encoded_query = quote(decoded_query, safe='=&+') if decoded_query else ''
        encoded_path = quote(decoded_path, safe='/') if decoded_path else ''

        return urlunparse((
            parsed.scheme,
            parsed.netloc,
            encoded_path,
            parsed.params,
            encoded_query,
            parsed.fragment
        ))

    except ValueError as e:
        logger.warning(f"Could not normalize URL '{url}': {e}. Using original URL.")
        return url
