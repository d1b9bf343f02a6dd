"""
Triage Interfaces Layer
=======================

FastAPI route handlers for ticket scoring.
"""

from helpdesk.triage.interfaces.controllers import triage_router

__all__ = ["triage_router"]
