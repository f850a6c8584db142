"""Pydantic Schemas — request/response validation for the automation API.

Invariants:
    - Schemas validate at system boundary (client input, API responses)
    - Domain enums from core/ used for enum fields

Design Decisions:
    - Separate from models: schemas are API contracts, models are persistence (ADR: DDD boundary)
"""
