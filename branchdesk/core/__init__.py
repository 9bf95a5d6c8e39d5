"""
Core helpers for branchdesk.

This package holds configuration, request helpers for the backend,
disposer objects, the operation result type and the session manager.
"""

__all__ = []
