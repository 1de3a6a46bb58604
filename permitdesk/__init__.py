"""Self-hosted permit and license tracking: SQLite storage, a JSON API and a web dashboard."""

__version__ = "0.1.0"