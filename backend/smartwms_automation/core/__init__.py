"""Core Layer — pure domain logic: matching, conditions, rate limits, records.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, models/, or db/
    - Functions take time as a parameter (`now`) instead of reading a clock
    - IO appears only as Protocol contracts (repository_protocols.py)

Design Decisions:
    - Functional core separated from imperative shell (ADR: impureim sandwich)
"""
