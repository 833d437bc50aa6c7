"""doiflow - DOI lifecycle management between a content repository and DataCite."""

from doiflow.__version__ import __version__, __author__, __license__, __description__
