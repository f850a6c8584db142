"""Automation Routes — HTTP tests for rule CRUD, execution entry points, and history.

Tests cover:
    - Create/get/list/update/toggle/delete with tenant scoping
    - Validation failures -> 400 envelope; unknown rule -> 404 RULE_NOT_FOUND
    - Manual trigger writes an execution and a notification; failures -> 502 with execution id
    - Dry run executes nothing
    - Event intake and inbound webhooks run matching rules
    - Execution history, per-rule history, and stats
    - Metadata option lists and health probes
"""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select

from smartwms_automation.models.notification import Notification
from smartwms_automation.models.rule_execution import RuleExecution

TENANT = uuid4()
BASE = f"/api/v1/tenants/{TENANT}/automation"

CANCEL_RULE = {
    "name": "Notify on cancel",
    "trigger_type": "status_changed",
    "trigger_entity_type": "Order",
    "action_type": "send_notification",
    "action_config": {
        "title": "Order {{orderNumber}} cancelled",
        "user_ids": [str(uuid4())],
    },
    "conditions": [{"field": "status", "operator": "equals", "value": "Cancelled"}],
}


async def _create(client, **overrides) -> dict:
    response = await client.post(f"{BASE}/rules", json={**CANCEL_RULE, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


async def _count(test_db, model) -> int:
    return (await test_db.execute(select(func.count()).select_from(model))).scalar_one()


# ─── CRUD ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_and_get_rule(client):
    created = await _create(client)

    assert created["name"] == "Notify on cancel"
    assert created["conditions"][0]["operator"] == "equals"
    assert created["action_config"]["notification_type"] == "alert"
    assert created["recent_executions"] == []

    response = await client.get(f"{BASE}/rules/{created['id']}")
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_rule_invisible_to_other_tenant(client):
    created = await _create(client)
    response = await client.get(f"/api/v1/tenants/{uuid4()}/automation/rules/{created['id']}")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "RULE_NOT_FOUND"


@pytest.mark.asyncio
async def test_schema_validation_error(client):
    response = await client.post(f"{BASE}/rules", json={**CANCEL_RULE, "trigger_type": "sometimes"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_invalid_action_config_rejected(client):
    response = await client.post(
        f"{BASE}/rules", json={**CANCEL_RULE, "action_type": "send_webhook"},
    )
    assert response.status_code == 400
    body = response.json()["error"]
    assert body["code"] == "INVALID_RULE"


@pytest.mark.asyncio
async def test_list_update_toggle_delete(client):
    created = await _create(client)
    await _create(client, name="Second", priority=5)

    listed = (await client.get(f"{BASE}/rules", params={"page_size": 1})).json()
    assert (listed["total"], listed["total_pages"]) == (2, 2)
    assert listed["items"][0]["name"] == "Second"

    updated = await client.put(
        f"{BASE}/rules/{created['id']}", json={"description": "Tell sales"},
    )
    assert updated.status_code == 200
    assert updated.json()["description"] == "Tell sales"
    assert updated.json()["name"] == "Notify on cancel"

    toggled = await client.post(f"{BASE}/rules/{created['id']}/toggle")
    assert toggled.json()["is_active"] is False

    deleted = await client.delete(f"{BASE}/rules/{created['id']}")
    assert deleted.status_code == 204
    assert (await client.get(f"{BASE}/rules/{created['id']}")).status_code == 404


# ─── Execution entry points ──────────────────────────────────────

@pytest.mark.asyncio
async def test_manual_trigger_records_and_notifies(client, test_db):
    created = await _create(client)

    response = await client.post(
        f"{BASE}/rules/{created['id']}/trigger",
        json={"event_data": {"orderNumber": "SO-100", "status": "Cancelled"}},
    )

    assert response.status_code == 200, response.text
    record = response.json()
    assert record["status"] == "completed"
    assert record["trigger_type"] == "manual"
    assert record["result_data"]["sent"] == 1
    [notification] = (await test_db.execute(select(Notification))).scalars().all()
    assert notification.title == "Order SO-100 cancelled"

    detail = (await client.get(f"{BASE}/rules/{created['id']}")).json()
    assert detail["total_executions"] == 1
    assert detail["successful_executions"] == 1
    assert detail["recent_executions"][0]["status"] == "completed"


@pytest.mark.asyncio
async def test_manual_trigger_skip_is_not_an_error(client):
    created = await _create(client)
    response = await client.post(
        f"{BASE}/rules/{created['id']}/trigger",
        json={"event_data": {"orderNumber": "SO-101", "status": "Shipped"}},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "skipped"
    assert response.json()["skip_reason"] == "conditions_not_met"


@pytest.mark.asyncio
async def test_manual_trigger_failure_returns_execution_id(client, test_db):
    created = await _create(
        client, name="Pick task", action_type="create_task",
        action_config={"task_type": "pick"}, conditions=[],
    )

    response = await client.post(f"{BASE}/rules/{created['id']}/trigger")

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "CAPABILITY_NOT_CONFIGURED"
    execution = await test_db.get(RuleExecution, UUID(error["context"]["execution_id"]))
    assert execution.status == "failed"


@pytest.mark.asyncio
async def test_dry_run_executes_nothing(client, test_db):
    created = await _create(client)

    response = await client.post(
        f"{BASE}/rules/{created['id']}/test",
        json={"test_data": {"orderNumber": "SO-100", "status": "Cancelled"}},
    )

    result = response.json()
    assert result["would_trigger"] is True
    assert result["condition_results"][0]["passed"] is True
    assert result["action_preview"]["config"]["title"] == "Order SO-100 cancelled"
    assert await _count(test_db, RuleExecution) == 0
    assert await _count(test_db, Notification) == 0


@pytest.mark.asyncio
async def test_event_intake_runs_matching_rules(client):
    await _create(client)

    response = await client.post(f"{BASE}/events", json={
        "trigger_type": "status_changed",
        "entity_type": "Order",
        "event_name": "StatusChanged:Cancelled",
        "data": {"orderNumber": "SO-100", "status": "Cancelled"},
    })

    [execution] = response.json()["executions"]
    assert execution["status"] == "completed"


@pytest.mark.asyncio
async def test_schedule_events_rejected_at_intake(client):
    response = await client.post(f"{BASE}/events", json={"trigger_type": "schedule"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_inbound_webhook(client):
    await _create(
        client, name="Carrier delivered", trigger_type="webhook_received",
        trigger_entity_type=None, trigger_event="carrier.delivered",
        conditions=[{"field": "tracking", "operator": "is_not_null"}],
    )

    response = await client.post(f"{BASE}/webhooks/carrier.delivered", json={"tracking": "1Z"})
    [execution] = response.json()["executions"]
    assert execution["status"] == "completed"

    other = await client.post(f"{BASE}/webhooks/carrier.lost", json={"tracking": "1Z"})
    assert other.json()["executions"] == []


# ─── History & stats ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_execution_history_and_stats(client):
    created = await _create(client)
    for status in ("Cancelled", "Shipped"):
        await client.post(
            f"{BASE}/rules/{created['id']}/trigger",
            json={"event_data": {"orderNumber": "SO-1", "status": status}},
        )

    history = (await client.get(f"{BASE}/executions")).json()
    assert history["total"] == 2
    assert history["items"][0]["rule_name"] == "Notify on cancel"

    skipped = (await client.get(f"{BASE}/executions", params={"status": "skipped"})).json()
    assert skipped["total"] == 1

    per_rule = (await client.get(f"{BASE}/rules/{created['id']}/executions")).json()
    assert per_rule["total"] == 2
    missing = await client.get(f"{BASE}/rules/{uuid4()}/executions")
    assert missing.status_code == 404

    stats = (await client.get(f"{BASE}/stats")).json()
    assert stats["total_rules"] == 1
    assert stats["total_executions_today"] == 2
    assert stats["successful_executions_today"] == 1
    assert stats["top_rules_by_executions"][0]["success_rate"] == 100.0


# ─── Metadata & health ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_option_lists(client):
    triggers = (await client.get(f"{BASE}/trigger-types")).json()
    assert {"value": "status_changed", "label": "Status Changed"} in triggers
    actions = (await client.get(f"{BASE}/action-types")).json()
    assert len(actions) == 12
    operators = (await client.get(f"{BASE}/condition-operators")).json()
    assert "is_not_null" in {o["value"] for o in operators}


@pytest.mark.asyncio
async def test_health_probes(client):
    live = await client.get("/api/v1/health/")
    assert live.json()["service"] == "smartwms-automation"
    ready = await client.get("/api/v1/health/ready")
    assert ready.status_code == 200
