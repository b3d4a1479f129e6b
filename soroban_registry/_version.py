"""Package version; single source for pyproject and the API health payload."""

__version__ = "0.1.0"
