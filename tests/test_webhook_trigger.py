import pytest

from core.errors import TriggerError
from db.models import AutomationRun, Contact
from services.automation.triggers import sync_automation_triggers
from services.automation.webhook_trigger import handle_webhook_trigger, parse_slug

PHONE_RULE = {"source": "lead.phone", "destination": "phone"}


@pytest.fixture
def webhook_flow(make_automation, node, edge):
    def _make(captured=True, verify_key=None, mapping=(PHONE_RULE,), status="active"):
        config = {"data_mapping": list(mapping)}
        if captured:
            config["last_captured_data"] = {"lead": {"phone": "5511900000000"}}
        if verify_key:
            config["verify_key"] = verify_key
        return make_automation(
            [
                node("hook_1", "webhook_received", node_type="trigger", **config),
                node("say", "send_text_message", message_text="Hi {{contact.name}}, plan {{trigger.plan}}"),
            ],
            [edge("hook_1", "say")],
            status=status,
        )

    return _make


def test_parse_slug():
    assert parse_slug("a1b2c3_hook_1") == ("a1b2c3", "hook_1")
    assert parse_slug("/automations/trigger/a1b2c3_node-9/") == ("a1b2c3", "node-9")
    for bad in ("a1b2c3", "_hook", "a1b2c3_", ""):
        with pytest.raises(TriggerError) as exc_info:
            parse_slug(bad)
        assert exc_info.value.status_code == 400


def test_unknown_prefix_and_node_are_not_found(db, profile, webhook_flow):
    webhook_flow()
    with pytest.raises(TriggerError) as exc_info:
        handle_webhook_trigger(db, "ffffff_hook_1", "POST", {}, {})
    assert exc_info.value.status_code == 404
    with pytest.raises(TriggerError) as exc_info:
        handle_webhook_trigger(db, "a1b2c3_missing", "POST", {}, {})
    assert exc_info.value.detail == "Automation trigger not found"


def test_first_call_captures_sample_without_running(db, profile, webhook_flow, provider):
    automation = webhook_flow(captured=False, status="paused")
    payload = {"lead": {"phone": "11 98765-4321"}}
    result = handle_webhook_trigger(db, "a1b2c3_hook_1", "POST", payload, {})

    assert result == {"status": "captured", "automation_id": str(automation.id), "node_id": "hook_1"}
    assert automation.nodes[0]["data"]["config"]["last_captured_data"] == payload
    assert automation.nodes[0]["data"]["config"]["data_mapping"] == [PHONE_RULE]
    assert db.query(AutomationRun).all() == []
    assert provider.sent == []


def test_verify_key_is_enforced(db, profile, webhook_flow, provider):
    webhook_flow(verify_key="s3cret")
    payload = {"lead": {"phone": "11 98765-4321"}}
    with pytest.raises(TriggerError) as exc_info:
        handle_webhook_trigger(db, "a1b2c3_hook_1", "POST", payload, {"X-Api-Key": "nope"})
    assert exc_info.value.status_code == 401

    result = handle_webhook_trigger(db, "a1b2c3_hook_1", "POST", payload, {"Authorization": "Bearer s3cret"})
    assert result["status"] == "processed"


def test_inactive_automation_is_not_found(db, profile, webhook_flow):
    webhook_flow(status="paused")
    with pytest.raises(TriggerError) as exc_info:
        handle_webhook_trigger(db, "a1b2c3_hook_1", "POST", {"lead": {"phone": "1"}}, {})
    assert exc_info.value.status_code == 404


def test_non_webhook_node_is_rejected(db, profile, make_automation, node):
    make_automation([node("kw", "message_received_with_keyword", node_type="trigger", keyword="hi")])
    with pytest.raises(TriggerError) as exc_info:
        handle_webhook_trigger(db, "a1b2c3_kw", "POST", {}, {})
    assert exc_info.value.status_code == 400


def test_missing_phone_rule_is_rejected(db, profile, webhook_flow):
    webhook_flow(mapping=({"source": "lead.name", "destination": "name"},))
    with pytest.raises(TriggerError) as exc_info:
        handle_webhook_trigger(db, "a1b2c3_hook_1", "POST", {"lead": {"name": "Ana"}}, {})
    assert exc_info.value.status_code == 400


def test_missing_phone_value_is_skipped(db, profile, webhook_flow, provider):
    webhook_flow()
    result = handle_webhook_trigger(db, "a1b2c3_hook_1", "POST", {"lead": {}}, {})
    assert result == {"status": "skipped", "detail": "phone number missing in payload mapping"}
    assert db.query(Contact).all() == []


def test_webhook_runs_flow_and_fires_new_contact(db, profile, webhook_flow, make_automation, provider, node, edge):
    webhook_flow(
        mapping=(
            PHONE_RULE,
            {"source": "lead.name", "destination": "name"},
            {"source": "plan", "destination": "tag"},
        )
    )
    welcome = make_automation(
        [node("n", "new_contact", node_type="trigger"), node("w", "send_text_message", message_text="Welcome")],
        [edge("n", "w")],
    )
    sync_automation_triggers(db, welcome)

    result = handle_webhook_trigger(
        db, "a1b2c3_hook_1", "POST", {"lead": {"phone": "(11) 98765-4321", "name": "Ana"}, "plan": "gold"}, {}
    )

    contact = db.query(Contact).first()
    assert contact.phone == "5511987654321"
    assert contact.tags == ["new-lead", "gold"]
    assert result["status"] == "processed"
    assert result["contact_id"] == str(contact.id)
    assert result["run_status"] == "success"
    assert [m["text"] for m in provider.sent] == ["Hi Ana, plan gold", "Welcome"]

    provider.sent.clear()
    handle_webhook_trigger(db, "a1b2c3_hook_1", "POST", {"lead": {"phone": "5511987654321"}, "plan": "gold"}, {})
    assert [m["text"] for m in provider.sent] == ["Hi Ana, plan gold"]


def test_batch_payload_processes_each_event(db, profile, webhook_flow, provider):
    webhook_flow()
    result = handle_webhook_trigger(
        db,
        "a1b2c3_hook_1",
        "POST",
        [{"lead": {"phone": "11911111111"}}, {"lead": {}}, {"lead": {"phone": "11922222222"}}],
        {},
    )
    assert result["status"] == "processed"
    assert [e["status"] for e in result["events"]] == ["processed", "skipped", "processed"]
    assert len(db.query(Contact).all()) == 2


def test_node_id_routes_to_its_automation(db, profile, webhook_flow, provider):
    first = webhook_flow()
    second = webhook_flow()
    second.nodes = [
        {**n, "id": "hook_2"} if n["id"] == "hook_1" else n for n in second.nodes
    ]
    second.edges = [{"id": "e", "source": "hook_2", "target": "say"}]
    sync_automation_triggers(db, second)

    handle_webhook_trigger(db, "a1b2c3_hook_2", "POST", {"lead": {"phone": "11911111111"}}, {})
    runs = db.query(AutomationRun).all()
    assert [r.automation_id for r in runs] == [second.id]
    assert first.id not in [r.automation_id for r in runs]


def test_batch_with_unmappable_phone_skips_that_event(db, profile, webhook_flow, provider):
    webhook_flow()
    result = handle_webhook_trigger(
        db,
        "a1b2c3_hook_1",
        "POST",
        [{"lead": {"phone": "11 98765-4321"}}, {"lead": {"phone": "n/a"}}],
        {},
    )
    assert [e["status"] for e in result["events"]] == ["processed", "skipped"]
    assert result["events"][1]["detail"] == "phone number missing in payload mapping"
    assert len(db.query(AutomationRun).all()) == 1
    assert len(provider.sent) == 1
