"""Event Publisher — the entry point other warehouse modules use to raise automation events.

Invariants:
    - Publishing never raises into the caller: automation failures must not break
      the operation that produced the event
    - Event names: Created, Updated, Deleted, StatusChanged:<new>,
      ThresholdCrossed:<field>:<Below|Above>, and the caller's name for custom events
    - Entity fields are merged at the top level of the event data so conditions
      address them directly (`status`, `orderNumber`, ...)
"""

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

from smartwms_automation.core.domain_types import TenantId, TriggerType
from smartwms_automation.core.record_execution import ExecutionRecord
from smartwms_automation.core.rule_types import TriggerEvent
from smartwms_automation.services.automation_engine import AutomationEngine

logger = logging.getLogger(__name__)

CUSTOM_ENTITY_TYPE = "Custom"


class AutomationEventPublisher:
    """Translates domain happenings into TriggerEvents for the engine."""

    def __init__(self, engine: AutomationEngine):
        self._engine = engine

    async def publish_entity_created(
        self, tenant_id: TenantId, entity_type: str, entity: Mapping[str, Any],
    ) -> list[ExecutionRecord]:
        return await self._publish(
            tenant_id, TriggerType.ENTITY_CREATED, entity_type, "Created",
            _entity_id(entity), dict(entity),
        )

    async def publish_entity_updated(
        self, tenant_id: TenantId, entity_type: str, entity: Mapping[str, Any],
        previous: Mapping[str, Any] | None = None,
    ) -> list[ExecutionRecord]:
        data = {**entity, "current": dict(entity), "previous": dict(previous or {})}
        return await self._publish(
            tenant_id, TriggerType.ENTITY_UPDATED, entity_type, "Updated",
            _entity_id(entity), data,
        )

    async def publish_entity_deleted(
        self, tenant_id: TenantId, entity_type: str, entity_id: UUID,
    ) -> list[ExecutionRecord]:
        return await self._publish(
            tenant_id, TriggerType.ENTITY_DELETED, entity_type, "Deleted",
            entity_id, {"entityId": str(entity_id)},
        )

    async def publish_status_changed(
        self, tenant_id: TenantId, entity_type: str, entity: Mapping[str, Any],
        previous_status: str, new_status: str,
    ) -> list[ExecutionRecord]:
        data = {
            **entity,
            "entity": dict(entity),
            "previousStatus": previous_status,
            "newStatus": new_status,
        }
        return await self._publish(
            tenant_id, TriggerType.STATUS_CHANGED, entity_type,
            f"StatusChanged:{new_status}", _entity_id(entity), data,
        )

    async def publish_threshold_crossed(
        self, tenant_id: TenantId, entity_type: str, entity_id: UUID, field: str,
        previous_value: Decimal, new_value: Decimal, threshold: Decimal,
        extra: Mapping[str, Any] | None = None,
    ) -> list[ExecutionRecord]:
        direction = "Below" if new_value < threshold else "Above"
        data = {
            **(extra or {}),
            "entityId": str(entity_id),
            "field": field,
            "previousValue": previous_value,
            "newValue": new_value,
            "threshold": threshold,
            "direction": direction,
        }
        return await self._publish(
            tenant_id, TriggerType.THRESHOLD_CROSSED, entity_type,
            f"ThresholdCrossed:{field}:{direction}", entity_id, data,
        )

    async def publish_stock_low(
        self, tenant_id: TenantId, product_id: UUID, sku: str,
        location_id: UUID, location_code: str,
        current_quantity: Decimal, min_quantity: Decimal,
    ) -> list[ExecutionRecord]:
        """Stock fell below its minimum: a ThresholdCrossed on StockLevel.quantity."""
        return await self.publish_threshold_crossed(
            tenant_id, "StockLevel", product_id, "quantity",
            previous_value=min_quantity + 1,
            new_value=current_quantity,
            threshold=min_quantity,
            extra={
                "productId": str(product_id),
                "sku": sku,
                "locationId": str(location_id),
                "locationCode": location_code,
            },
        )

    async def publish_custom_event(
        self, tenant_id: TenantId, event_name: str, data: Mapping[str, Any] | None = None,
    ) -> list[ExecutionRecord]:
        return await self._publish(
            tenant_id, TriggerType.WEBHOOK_RECEIVED, CUSTOM_ENTITY_TYPE,
            event_name, None, dict(data or {}),
        )

    async def _publish(
        self, tenant_id: TenantId, trigger_type: TriggerType, entity_type: str,
        event_name: str, entity_id: UUID | None, data: dict,
    ) -> list[ExecutionRecord]:
        logger.debug(
            f"Publishing {trigger_type.value} {entity_type} {event_name}",
            extra={"tenant_id": str(tenant_id), "trigger_type": trigger_type.value},
        )
        try:
            event = TriggerEvent(
                trigger_type=trigger_type, data=data, entity_type=entity_type,
                entity_id=entity_id, event_name=event_name,
            )
            return await self._engine.handle(tenant_id, event)
        except Exception as e:
            logger.error(
                f"Error processing automation event {trigger_type.value} "
                f"{entity_type} {event_name}: {e}",
                extra={"tenant_id": str(tenant_id), "trigger_type": trigger_type.value},
                exc_info=True,
            )
            return []


def _entity_id(entity: Mapping[str, Any]) -> UUID | None:
    raw = entity.get("id", entity.get("Id"))
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw)) if raw is not None else None
    except ValueError:
        return None
