"""Action Configs — tests for per-action payload validation.

Tests cover:
    - One model registered per action type
    - Unknown keys rejected
    - Per-action required fields (email recipients, webhook auth, assignee)
    - parse errors surface as InvalidRuleError on action_config
"""

from uuid import uuid4

import pytest

from smartwms_automation.core.action_configs import (
    ACTION_CONFIG_MODELS,
    SendWebhookConfig,
    dump_action_config,
    parse_action_config,
)
from smartwms_automation.core.domain_types import ActionType
from smartwms_automation.core.errors import InvalidRuleError


def test_every_action_type_has_a_model():
    assert set(ACTION_CONFIG_MODELS) == set(ActionType)


def test_parse_accepts_string_action_type():
    config = parse_action_config("send_notification", {"title": "Order {{orderNumber}}"})
    assert config.title == "Order {{orderNumber}}"
    assert config.priority == "normal"


def test_unknown_key_rejected():
    with pytest.raises(InvalidRuleError) as exc:
        parse_action_config(ActionType.SEND_NOTIFICATION, {"titel": "typo"})
    assert exc.value.field == "action_config"
    assert "titel" in exc.value.message


@pytest.mark.parametrize("action_type,raw", [
    (ActionType.SEND_EMAIL, {"subject": "No recipients"}),
    (ActionType.SEND_WEBHOOK, {"url": "ftp://example.com"}),
    (ActionType.SEND_WEBHOOK, {"url": "https://x.test", "auth_type": "bearer"}),
    (ActionType.SEND_WEBHOOK, {"url": "https://x.test", "auth_type": "basic"}),
    (ActionType.ASSIGN_TASK, {}),
    (ActionType.CREATE_TASK, {}),
    (ActionType.GENERATE_REPORT, {"report_type": "stock", "email_report": True}),
    (ActionType.CREATE_TRANSFER, {"quantity": "0"}),
])
def test_invalid_configs_rejected(action_type, raw):
    with pytest.raises(InvalidRuleError):
        parse_action_config(action_type, raw)


def test_webhook_url_may_be_a_template():
    config = parse_action_config(ActionType.SEND_WEBHOOK, {"url": "{{callbackUrl}}"})
    assert config.method == "POST"


def test_parse_passes_through_model_instance():
    config = SendWebhookConfig(url="https://x.test")
    assert parse_action_config(ActionType.SEND_WEBHOOK, config) is config


def test_dump_is_json_safe():
    user = uuid4()
    config = parse_action_config(ActionType.SEND_EMAIL, {"to_user_ids": [str(user)]})
    dumped = dump_action_config(config)
    assert dumped["to_user_ids"] == [str(user)]
    assert dumped["is_html"] is True


def test_configs_are_frozen():
    config = parse_action_config(ActionType.SEND_WEBHOOK, {"url": "https://x.test"})
    with pytest.raises(Exception):
        config.url = "https://other.test"
