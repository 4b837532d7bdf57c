"""
Domain helpers for the dashboard.

Permission checks over already-fetched Discord payloads and the request
models of the dashboard routes; nothing here performs I/O.
"""

from .permissions import PERMISSION_FLAGS, has_permission, filter_by_permission

__all__ = ["PERMISSION_FLAGS", "has_permission", "filter_by_permission"]
