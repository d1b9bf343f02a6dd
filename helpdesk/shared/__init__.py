"""
Shared Kernel Module
====================

Generic infrastructure used by all bounded contexts (governance, learning,
triage): structured logging and the HTTP middleware stack.

DO NOT add business logic from a bounded context to the shared kernel.
"""
