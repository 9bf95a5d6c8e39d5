"""
branchdesk package
------------------

Staff front end for branch management: session/authorization context
over the backend service, inventory and shift operations, and the
payment gateway redirect pages. Importing ``branchdesk`` exposes the
FastAPI ``app`` instance for ASGI servers.
"""

from .main import app, create_app  # noqa: F401
