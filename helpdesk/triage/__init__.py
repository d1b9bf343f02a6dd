"""
Triage Module
=============

Bounded context for scoring new tickets: confidence that an automated
answer is safe, complexity, and the auto-respond / escalate decisions.

Layers:
- domain: scoring rules
- application: TriageService, DTOs
- interfaces: FastAPI controllers
"""
