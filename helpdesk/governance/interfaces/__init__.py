"""
Governance Interfaces Layer
============================

FastAPI route handlers for administrator policy endpoints.
"""

from helpdesk.governance.interfaces.controllers import governance_router

__all__ = ["governance_router"]
