"""
Learning Module
===============

Bounded context that turns resolved tickets into resolution patterns and
knowledge articles, deduplicates them, and keeps the similarity index
that ticket scoring reads from.

Layers:
- domain: entities, model-output schemas, prompts, batch / quality policies
- application: extraction, pattern library, article generation, queue, search, feedback
- infrastructure: SQLAlchemy models and repositories, scheduler
- interfaces: FastAPI controllers
"""
