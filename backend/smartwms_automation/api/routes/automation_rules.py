"""Automation Rules — tenant-scoped rule CRUD, manual trigger, dry run, and event intake.

Invariants:
    - Every path carries tenant_id; a rule is only visible to its tenant
    - Rule writes commit in the route (services flush only)
    - Manual trigger surfaces action failures as structured 502/504 responses that
      carry the recorded execution id; event intake never fails because a rule did
    - Deleting a rule drops its lock from the shared registry

Design Decisions:
    - Engine operations take the runtime via Depends(get_runtime) so tests can swap it
    - Metadata endpoints list enum values from core/domain_types (single source)
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from smartwms_automation.core.domain_types import (
    ActionType,
    ConditionOperator,
    RuleId,
    TenantId,
    TriggerType,
)
from smartwms_automation.core.rule_types import TriggerEvent, utc_now
from smartwms_automation.infrastructure.database import get_db
from smartwms_automation.schemas.rule import (
    EventIn,
    ExecutionSummary,
    ManualTriggerRequest,
    RuleCreate,
    RuleDetailResponse,
    RuleResponse,
    RuleTestRequest,
    RuleUpdate,
)
from smartwms_automation.services import rule_management
from smartwms_automation.services.engine_runtime import AutomationRuntime, get_runtime

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/tenants/{tenant_id}/automation", tags=["automation"],
)


async def _detail(db: AsyncSession, rule) -> RuleDetailResponse:
    executions = await rule_management.recent_executions(db, rule.id)
    return RuleDetailResponse.model_validate(rule).model_copy(update={
        "recent_executions": [ExecutionSummary.model_validate(e) for e in executions],
    })


# ─── Rules ───────────────────────────────────────────────────────

@router.get("/rules")
async def list_rules(
    tenant_id: UUID,
    trigger_type: TriggerType | None = None,
    action_type: ActionType | None = None,
    is_active: bool | None = None,
    search: str | None = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    rules, total = await rule_management.list_rules(
        db, tenant_id,
        trigger_type=trigger_type, action_type=action_type,
        is_active=is_active, search=search, page=page, page_size=page_size,
    )
    return {
        "items": [RuleResponse.model_validate(r).model_dump(mode="json") for r in rules],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": rule_management.total_pages(total, page_size),
    }


@router.get("/rules/{rule_id}", response_model=RuleDetailResponse)
async def get_rule(
    tenant_id: UUID, rule_id: UUID, db: AsyncSession = Depends(get_db),
):
    rule = await rule_management.get_rule_or_raise(db, tenant_id, rule_id)
    return await _detail(db, rule)


@router.post(
    "/rules", response_model=RuleDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_rule(
    tenant_id: UUID, body: RuleCreate, db: AsyncSession = Depends(get_db),
):
    rule = await rule_management.create_rule(db, tenant_id, body, utc_now())
    await db.commit()
    return await _detail(db, rule)


@router.put("/rules/{rule_id}", response_model=RuleDetailResponse)
async def update_rule(
    tenant_id: UUID, rule_id: UUID, body: RuleUpdate,
    db: AsyncSession = Depends(get_db),
):
    rule = await rule_management.update_rule(db, tenant_id, rule_id, body, utc_now())
    await db.commit()
    return await _detail(db, rule)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    tenant_id: UUID, rule_id: UUID,
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    await rule_management.delete_rule(db, tenant_id, rule_id)
    await db.commit()
    runtime.engine.locks.discard(rule_id)


@router.post("/rules/{rule_id}/toggle", response_model=RuleResponse)
async def toggle_rule(
    tenant_id: UUID, rule_id: UUID, db: AsyncSession = Depends(get_db),
):
    rule = await rule_management.toggle_rule(db, tenant_id, rule_id, utc_now())
    await db.commit()
    return RuleResponse.model_validate(rule)


# ─── Execution entry points ──────────────────────────────────────

@router.post("/rules/{rule_id}/trigger")
async def trigger_rule(
    tenant_id: UUID, rule_id: UUID,
    body: ManualTriggerRequest | None = None,
    runtime: AutomationRuntime = Depends(get_runtime),
):
    """Run one rule now. Rate limits apply; trigger matching does not."""
    body = body or ManualTriggerRequest()
    record = await runtime.engine.trigger(
        TenantId(tenant_id), RuleId(rule_id),
        event_data=body.event_data,
        entity_type=body.entity_type,
        entity_id=body.entity_id,
    )
    return record.to_dict()


@router.post("/rules/{rule_id}/test")
async def test_rule(
    tenant_id: UUID, rule_id: UUID,
    body: RuleTestRequest | None = None,
    runtime: AutomationRuntime = Depends(get_runtime),
):
    """Dry run: condition results, rate-limit decision, rendered action. Executes nothing."""
    body = body or RuleTestRequest()
    data = dict(body.test_data)
    if body.entity_id is not None:
        data.setdefault("id", str(body.entity_id))
    result = await runtime.engine.test(TenantId(tenant_id), RuleId(rule_id), data)
    return result.to_dict()


@router.post("/events")
async def receive_event(
    tenant_id: UUID, body: EventIn,
    runtime: AutomationRuntime = Depends(get_runtime),
):
    """Event intake for domain modules running out of process."""
    records = await runtime.engine.handle(
        TenantId(tenant_id),
        TriggerEvent(
            trigger_type=body.trigger_type,
            data=body.data,
            entity_type=body.entity_type,
            entity_id=body.entity_id,
            event_name=body.event_name,
        ),
    )
    return {"executions": [r.to_dict() for r in records]}


@router.post("/webhooks/{event_name}")
async def receive_webhook(
    tenant_id: UUID, event_name: str,
    payload: dict[str, Any] | None = Body(None),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    """Inbound webhook: raises a webhook_received event named event_name."""
    records = await runtime.publisher.publish_custom_event(
        TenantId(tenant_id), event_name, payload,
    )
    return {"executions": [r.to_dict() for r in records]}


# ─── Metadata ────────────────────────────────────────────────────

def _options(enum_cls) -> list[dict]:
    return [
        {"value": member.value, "label": member.value.replace("_", " ").title()}
        for member in enum_cls
    ]


@router.get("/trigger-types")
async def list_trigger_types(tenant_id: UUID):
    return _options(TriggerType)


@router.get("/action-types")
async def list_action_types(tenant_id: UUID):
    return _options(ActionType)


@router.get("/condition-operators")
async def list_condition_operators(tenant_id: UUID):
    return _options(ConditionOperator)
