import json
import uuid
from types import SimpleNamespace

import pytest
import requests

from core.errors import ActionError, OutboundWebhookError
from db.models import Contact, MessageTemplate, SentMessage
from services.automation.handlers import logic
from services.automation.handlers.contact import add_tag, remove_tag, set_custom_field
from services.automation.handlers.integrations import send_webhook
from services.automation.handlers.logic import condition, evaluate, split_path
from services.automation.handlers.messaging import (
    send_interactive_message,
    send_media,
    send_template,
    send_text_message,
)
from services.automation.nodes import AutomationNode
from services.automation.types import ActionContext, ContactState
from services.messaging import MockMessagingProvider, TemplateDetails


def build_ctx(db, profile, contact, node_dict, trigger=None, provider=None):
    provider = provider or MockMessagingProvider()
    return ActionContext(
        profile=profile,
        contact=ContactState.model_validate(contact) if contact is not None else None,
        node=AutomationNode.model_validate(node_dict),
        trigger=trigger,
        db=db,
        provider_factory=lambda p, cache: provider,
        run_id=uuid.uuid4(),
    )


def test_add_tag_persists_and_returns_updated_contact(db, profile, make_contact, node):
    contact = make_contact(tags=["lead"])
    result = add_tag(build_ctx(db, profile, contact, node("n", "add_tag", tag="vip")))
    assert result.updated_contact.tags == ["lead", "vip"]
    assert db.query(Contact).first().tags == ["lead", "vip"]


def test_add_tag_is_noop_when_present(db, profile, make_contact, node):
    contact = make_contact(tags=["vip"])
    result = add_tag(build_ctx(db, profile, contact, node("n", "add_tag", tag="vip")))
    assert result.updated_contact.tags == ["vip"]
    assert db.commits == 0


def test_add_tag_resolves_variables(db, profile, make_contact, node):
    contact = make_contact()
    ctx = build_ctx(db, profile, contact, node("n", "add_tag", tag="src-{{trigger.source}}"), trigger={"source": "ads"})
    assert add_tag(ctx).updated_contact.tags == ["src-ads"]


def test_remove_tag(db, profile, make_contact, node):
    contact = make_contact(tags=["a", "b"])
    result = remove_tag(build_ctx(db, profile, contact, node("n", "remove_tag", tag="a")))
    assert result.updated_contact.tags == ["b"]
    result = remove_tag(build_ctx(db, profile, contact, node("n", "remove_tag", tag="zzz")))
    assert result.updated_contact.tags == ["b"]


def test_tag_handlers_require_contact_and_tag(db, profile, make_contact, node):
    with pytest.raises(ActionError, match="requires a contact"):
        add_tag(build_ctx(db, profile, None, node("n", "add_tag", tag="vip")))
    with pytest.raises(ActionError):
        add_tag(build_ctx(db, profile, make_contact(), node("n", "add_tag")))


def test_set_custom_field(db, profile, make_contact, node):
    contact = make_contact(custom_fields={"a": 1})
    ctx = build_ctx(
        db,
        profile,
        contact,
        node("n", "set_custom_field", field_name="order_id", field_value="{{trigger.order}}"),
        trigger={"order": "A-9"},
    )
    result = set_custom_field(ctx)
    assert result.updated_contact.custom_fields == {"a": 1, "order_id": "A-9"}
    assert "order_id" in result.details


def test_send_text_message_records_sent_message(db, profile, make_contact, node):
    provider = MockMessagingProvider()
    contact = make_contact()
    ctx = build_ctx(db, profile, contact, node("n", "send_text_message", message_text="Hi {{contact.name}}"), provider=provider)
    result = send_text_message(ctx)
    assert provider.sent[0]["text"] == "Hi Ana"
    assert provider.sent[0]["to"] == contact.phone
    sent = db.query(SentMessage).first()
    assert sent.meta_message_id == provider.sent[0]["id"]
    assert sent.automation_run_id == ctx.run_id
    assert "Ana" in result.details


def test_send_text_message_requires_text(db, profile, make_contact, node):
    with pytest.raises(ActionError):
        send_text_message(build_ctx(db, profile, make_contact(), node("n", "send_text_message")))


def test_send_media_resolves_url_and_caption(db, profile, make_contact, node):
    provider = MockMessagingProvider()
    ctx = build_ctx(
        db,
        profile,
        make_contact(custom_fields={"pdf": "inv.pdf"}),
        node(
            "n",
            "send_media",
            media_type="document",
            media_url="https://cdn.example.com/{{contact.custom_fields.pdf}}",
            caption="For {{contact.name}}",
        ),
        provider=provider,
    )
    send_media(ctx)
    assert provider.sent[0]["url"] == "https://cdn.example.com/inv.pdf"
    assert provider.sent[0]["caption"] == "For Ana"
    assert provider.sent[0]["media_type"] == "document"


def test_send_interactive_message_resolves_labels(db, profile, make_contact, node):
    provider = MockMessagingProvider()
    buttons = [{"id": f"b{i}", "text": f"{{{{contact.name}}}} {i}"} for i in range(4)]
    ctx = build_ctx(
        db,
        profile,
        make_contact(),
        node("n", "send_interactive_message", message_text="Pick one", buttons=buttons),
        provider=provider,
    )
    send_interactive_message(ctx)
    assert provider.sent[0]["buttons"] == [{"id": "b0", "text": "Ana 0"}, {"id": "b1", "text": "Ana 1"}, {"id": "b2", "text": "Ana 2"}]


def make_template(db, profile, meta_id=None):
    template = MessageTemplate(
        id=uuid.uuid4(),
        user_id=profile.id,
        template_name="order_update",
        language="pt_BR",
        meta_id=meta_id,
        components=[
            {"type": "HEADER", "text": "Hello {{1}}"},
            {"type": "BODY", "text": "Order {{2}} for {{1}}"},
            {
                "type": "BUTTONS",
                "buttons": [
                    {"type": "URL", "url": "https://shop.example.com/{{1}}"},
                    {"type": "QUICK_REPLY", "text": "Stop"},
                ],
            },
        ],
    )
    db.add(template)
    return template


def test_send_template_builds_components(db, profile, make_contact, node):
    provider = MockMessagingProvider()
    template = make_template(db, profile)
    ctx = build_ctx(
        db,
        profile,
        make_contact(custom_fields={"order_id": "A-1"}),
        node("n", "send_template", template_id=str(template.id), **{"{{2}}": "{{contact.custom_fields.order_id}}"}),
        provider=provider,
    )
    result = send_template(ctx)
    sent = provider.sent[0]
    assert sent["template_name"] == "order_update"
    assert sent["language"] == "pt_BR"
    assert sent["components"] == [
        {"type": "header", "parameters": [{"type": "text", "text": "Ana"}]},
        {"type": "body", "parameters": [{"type": "text", "text": "A-1"}, {"type": "text", "text": "Ana"}]},
        {"type": "button", "sub_type": "url", "index": "0", "parameters": [{"type": "text", "text": "Ana"}]},
    ]
    assert "order_update" in result.details


def test_send_template_uses_provider_details(db, profile, make_contact, node):
    class DetailsProvider(MockMessagingProvider):
        def get_template_details(self, template_id):
            return TemplateDetails(name="remote_name", language="en_US")

    provider = DetailsProvider()
    template = make_template(db, profile, meta_id="meta-42")
    send_template(build_ctx(db, profile, make_contact(), node("n", "send_template", template_id=str(template.id)), provider=provider))
    assert provider.sent[0]["template_name"] == "remote_name"
    assert provider.sent[0]["language"] == "en_US"


def test_send_template_requires_contact(db, profile, node):
    with pytest.raises(ActionError, match="requires a contact"):
        send_template(build_ctx(db, profile, None, node("n", "send_template", template_id="x")))


def test_send_template_unknown_template(db, profile, make_contact, node):
    with pytest.raises(ActionError, match="not found"):
        send_template(build_ctx(db, profile, make_contact(), node("n", "send_template", template_id=str(uuid.uuid4()))))
    with pytest.raises(ActionError, match="not found"):
        send_template(build_ctx(db, profile, make_contact(), node("n", "send_template", template_id="not-a-uuid")))
    with pytest.raises(ActionError, match="No template"):
        send_template(build_ctx(db, profile, make_contact(), node("n", "send_template")))


def fake_response(status_code=200, text="ok"):
    return SimpleNamespace(status_code=status_code, text=text)


def test_send_webhook_posts_resolved_json(db, profile, make_contact, node, monkeypatch):
    calls = []

    def fake_request(method, url, **kwargs):
        calls.append((method, url, kwargs))
        return fake_response(201)

    monkeypatch.setattr(requests, "request", fake_request)
    ctx = build_ctx(
        db,
        profile,
        make_contact(tags=["vip"], custom_fields={"token": "t-1"}),
        node(
            "n",
            "send_webhook",
            url="https://hooks.example.com/{{contact.phone}}",
            headers='{"X-Token": "{{contact.custom_fields.token}}"}',
            body='{"name": "{{contact.name}}", "tags": "{{contact.tags}}", "missing": "{{contact.nope}}"}',
        ),
    )
    result = send_webhook(ctx)
    method, url, kwargs = calls[0]
    assert method == "POST"
    assert url == "https://hooks.example.com/5511987654321"
    assert kwargs["headers"]["X-Token"] == "t-1"
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert json.loads(kwargs["data"]) == {"name": "Ana", "tags": ["vip"], "missing": None}
    assert kwargs["timeout"] > 0
    assert "201" in result.details


def test_send_webhook_form_body_and_key_value_headers(db, profile, make_contact, node, monkeypatch):
    calls = []
    monkeypatch.setattr(requests, "request", lambda method, url, **kw: calls.append(kw) or fake_response())
    ctx = build_ctx(
        db,
        profile,
        make_contact(),
        node(
            "n",
            "send_webhook",
            url="https://hooks.example.com",
            headers=[{"key": "X-Name", "value": "{{contact.name}}"}, {"key": "", "value": "skip"}],
            content_type="form_urlencoded",
            body_params=[{"key": "name", "value": "{{contact.name}}"}],
        ),
    )
    send_webhook(ctx)
    assert calls[0]["headers"] == {"X-Name": "Ana", "Content-Type": "application/x-www-form-urlencoded"}
    assert calls[0]["data"] == {"name": "Ana"}


def test_send_webhook_get_has_no_body(db, profile, make_contact, node, monkeypatch):
    calls = []
    monkeypatch.setattr(requests, "request", lambda method, url, **kw: calls.append(kw) or fake_response())
    send_webhook(build_ctx(db, profile, make_contact(), node("n", "send_webhook", url="https://x.example.com", method="get", body='{"a": 1}')))
    assert calls[0]["data"] is None


def test_send_webhook_non_2xx_fails_with_body(db, profile, make_contact, node, monkeypatch):
    monkeypatch.setattr(requests, "request", lambda method, url, **kw: fake_response(500, "upstream exploded"))
    with pytest.raises(OutboundWebhookError, match="upstream exploded"):
        send_webhook(build_ctx(db, profile, make_contact(), node("n", "send_webhook", url="https://x.example.com")))


def test_send_webhook_transport_error(db, profile, make_contact, node, monkeypatch):
    def boom(method, url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "request", boom)
    with pytest.raises(OutboundWebhookError, match="refused"):
        send_webhook(build_ctx(db, profile, make_contact(), node("n", "send_webhook", url="https://x.example.com")))


def test_send_webhook_requires_url(db, profile, make_contact, node):
    with pytest.raises(ActionError):
        send_webhook(build_ctx(db, profile, make_contact(), node("n", "send_webhook")))


@pytest.mark.parametrize(
    "operator,source,expected,met",
    [
        ("contains", ["Lead", "VIP"], "vip", True),
        ("contains", "Hello World", "world", True),
        ("not_contains", ["lead"], "vip", True),
        ("equals", "Ana", "ana", True),
        ("not_equals", "Ana", "bia", True),
        ("starts_with", "5511999", "5511", True),
        ("is_empty", [], "", True),
        ("is_empty", None, "", True),
        ("is_not_empty", "x", "", True),
        ("equals", None, "ana", False),
    ],
)
def test_condition_operators(operator, source, expected, met):
    assert evaluate(operator, source, expected) is met


def test_condition_returns_true_false_handle(db, profile, make_contact, node):
    contact = make_contact(tags=["vip"])
    yes = condition(build_ctx(db, profile, contact, node("c", "condition", field="contact.tags", operator="contains", value="vip")))
    no = condition(build_ctx(db, profile, contact, node("c", "condition", field="contact.tags", operator="contains", value="gold")))
    assert yes.next_node_handle == "true"
    assert no.next_node_handle == "false"


def test_split_path_picks_weighted_branch(db, profile, node, monkeypatch):
    captured = {}

    def fake_choices(branches, weights=None, k=1):
        captured["weights"] = weights
        return [branches[-1]]

    monkeypatch.setattr(logic.random, "choices", fake_choices)
    result = split_path(build_ctx(db, profile, None, node("s", "split_path", branches=["x", "y"], weights=[1, 3])))
    assert result.next_node_handle == "y"
    assert captured["weights"] == [1, 3]


def test_send_template_configured_first_placeholder_wins(db, profile, make_contact, node):
    provider = MockMessagingProvider()
    template = make_template(db, profile)
    config = {"template_id": str(template.id), "{{1}}": "{{contact.custom_fields.nickname}}"}
    send_template(
        build_ctx(db, profile, make_contact(custom_fields={"nickname": "Aninha"}), node("n", "send_template", **config), provider=provider)
    )
    header = provider.sent[0]["components"][0]
    assert header == {"type": "header", "parameters": [{"type": "text", "text": "Aninha"}]}
