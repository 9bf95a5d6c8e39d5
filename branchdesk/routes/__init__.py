"""
Route aggregation package for branchdesk.

Each functional area (authentication, inventory and shifts, payment
redirects) is its own module defining an ``APIRouter``. The application
factory in :mod:`branchdesk.main` includes them.
"""

__all__ = [
    "auth",
    "inventory",
    "payment",
]

from . import auth, inventory, payment  # noqa: E402,F401
