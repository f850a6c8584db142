"""Automation Executions — read-only execution history and tenant statistics."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from smartwms_automation.core.domain_types import ExecutionStatus
from smartwms_automation.core.rule_types import utc_now
from smartwms_automation.infrastructure.database import get_db
from smartwms_automation.schemas.execution import AutomationStats
from smartwms_automation.services import execution_queries, rule_management

router = APIRouter(
    prefix="/api/v1/tenants/{tenant_id}/automation", tags=["automation"],
)


async def _page(db, tenant_id, page, page_size, **filters) -> dict:
    items, total = await execution_queries.list_executions(
        db, tenant_id, page=page, page_size=page_size, **filters,
    )
    return {
        "items": [i.model_dump(mode="json") for i in items],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": rule_management.total_pages(total, page_size),
    }


@router.get("/executions")
async def list_executions(
    tenant_id: UUID,
    rule_id: UUID | None = None,
    status: ExecutionStatus | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await _page(
        db, tenant_id, page, page_size,
        rule_id=rule_id, status=status, date_from=date_from, date_to=date_to,
    )


@router.get("/rules/{rule_id}/executions")
async def list_rule_executions(
    tenant_id: UUID,
    rule_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    await rule_management.get_rule_or_raise(db, tenant_id, rule_id)
    return await _page(db, tenant_id, page, page_size, rule_id=rule_id)


@router.get("/stats", response_model=AutomationStats)
async def get_stats(tenant_id: UUID, db: AsyncSession = Depends(get_db)):
    return await execution_queries.get_stats(db, tenant_id, utc_now())
