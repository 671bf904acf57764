"""
Guardrail kernel: the policy store, money-movement lifecycle, and event journal.

Layering (inner to outer):
    guardrail_kernel.domain    pure value types, no I/O
    guardrail_kernel.db        engine, session scope, declarative base
    guardrail_kernel.models    SQLAlchemy ORM records
    guardrail_kernel.services  store, provisioning, lifecycle, journal

guardrail_engines holds the pure resolver/evaluator; guardrail_services holds
the per-domain entry points that compose everything.
"""
