"""
Learning Interfaces Layer
==========================

FastAPI route handlers for the learning queue and the knowledge base.
"""

from helpdesk.learning.interfaces.controllers import learning_router

__all__ = ["learning_router"]
