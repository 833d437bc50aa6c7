"""Version information for doiflow."""

__version__ = "0.1.0"
__version_info__ = (0, 1, 0)

# Release information
__author__ = "doiflow contributors"
__license__ = "MIT"
__description__ = "DOI lifecycle engine: metadata assembly, change detection and DataCite state transitions"
