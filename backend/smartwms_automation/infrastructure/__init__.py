"""Infrastructure Layer — database sessions, outbound clients, and logging.

Invariants:
    - Infrastructure depends on core only for errors and capability request shapes
    - All external calls wrapped with retry/timeout/error mapping

Design Decisions:
    - Resilient wrappers over raw clients (ADR: single responsibility)
"""
