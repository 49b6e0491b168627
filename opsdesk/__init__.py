"""OpsDesk: reconciliation, status pipeline and draft-merge core for the operations dashboard."""

__version__ = "0.1.0"
