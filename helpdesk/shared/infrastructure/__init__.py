"""
Shared Infrastructure
=====================

Structured JSON logging with correlation ids and latency timing.
"""
