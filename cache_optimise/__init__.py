"""Post-process cached HTML pages: inline purged CSS, defer scripts, preload fonts."""

__version__ = "0.1.0"
