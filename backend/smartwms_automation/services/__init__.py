"""Services Layer — the engine, action dispatch, scheduling, and rule management.

Invariants:
    - Action dispatch uses explicit dict mapping (no auto-discovery)
    - Services depend on core Protocols; concrete repositories are injected

Design Decisions:
    - One file per concern for locality (ADR: no god objects)
"""
