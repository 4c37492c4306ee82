"""OCDash: read-only observability backend over agent runtime artifacts."""

__version__ = "0.1.0"
