import re
from typing import Any, Dict, List, Optional

from core.errors import ActionError
from core.logging import get_logger, log_extra
from db.base import to_uuid
from db.models import MessageTemplate, SentMessage
from services.automation.types import ActionContext, ActionResult, ContactState
from services.automation.variables import resolve_variables

logger = get_logger(__name__)

TEMPLATE_PLACEHOLDER_RE = re.compile(r"\{\{\d+\}\}")
# Template placeholder {{1}} carries the contact name unless the node configures it.
NAME_PLACEHOLDER = "{{1}}"


def _require_contact(ctx: ActionContext, action: str) -> ContactState:
    if ctx.contact is None:
        raise ActionError(
            f'Action "{action}" requires a contact; the automation was started by a trigger without one'
        )
    return ctx.contact


def _record_sent(ctx: ActionContext, contact: ContactState, message_id: str, body: str) -> None:
    ctx.db.add(
        SentMessage(
            user_id=ctx.profile.id,
            contact_id=to_uuid(contact.id),
            automation_run_id=ctx.run_id,
            meta_message_id=message_id,
            message_body=body,
            status="sent",
        )
    )
    ctx.db.commit()
    logger.info(
        "Automation message sent",
        **log_extra(ctx.profile.id, node_id=ctx.node.id, contact_id=contact.id, message_id=message_id),
    )


def _load_template(ctx: ActionContext, template_id: str) -> MessageTemplate:
    try:
        template_uuid = to_uuid(template_id)
    except ValueError as exc:
        raise ActionError(f"Template {template_id} not found") from exc
    template = (
        ctx.db.query(MessageTemplate)
        .filter(MessageTemplate.id == template_uuid, MessageTemplate.user_id == ctx.profile.id)
        .first()
    )
    if template is None:
        raise ActionError(f"Template {template_id} not found")
    return template


def _find_component(components: List[Dict[str, Any]], kind: str) -> Optional[Dict[str, Any]]:
    for component in components:
        if str(component.get("type", "")).upper() == kind:
            return component
    return None


def build_template_components(
    template_components: List[Dict[str, Any]], config: Any, variables: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """Translate stored template components into Cloud API parameters."""

    def parameters_for(text: str) -> List[Dict[str, str]]:
        params = []
        for placeholder in TEMPLATE_PLACEHOLDER_RE.findall(text or ""):
            raw = config.placeholder_value(placeholder)
            if not raw and placeholder == NAME_PLACEHOLDER:
                raw = "{{contact.name}}"
            params.append({"type": "text", "text": resolve_variables(raw, variables)})
        return params

    components: List[Dict[str, Any]] = []
    for kind in ("HEADER", "BODY"):
        component = _find_component(template_components, kind)
        if component and component.get("text"):
            params = parameters_for(component["text"])
            if params:
                components.append({"type": kind.lower(), "parameters": params})

    buttons = _find_component(template_components, "BUTTONS")
    if buttons:
        for index, button in enumerate(buttons.get("buttons") or []):
            if str(button.get("type", "")).upper() != "URL" or not button.get("url"):
                continue
            params = parameters_for(button["url"])
            if params:
                components.append(
                    {"type": "button", "sub_type": "url", "index": str(index), "parameters": params}
                )
    return components


def send_template(ctx: ActionContext) -> ActionResult:
    contact = _require_contact(ctx, "send_template")
    config = ctx.config
    if not config.template_id:
        raise ActionError("No template selected for this node")
    template = _load_template(ctx, config.template_id)

    provider = ctx.messaging()
    name, language = template.template_name, template.language
    if template.meta_id:
        details = provider.get_template_details(template.meta_id)
        if details is not None:
            name, language = details.name, details.language

    components = build_template_components(template.components or [], config, ctx.variables)
    message_id = provider.send_template(contact.phone, name, language, components or None)
    _record_sent(ctx, contact, message_id, f"[template] {name}")
    return ActionResult(details=f"Template '{name}' sent to {contact.name}")


def send_text_message(ctx: ActionContext) -> ActionResult:
    contact = _require_contact(ctx, "send_text_message")
    if not ctx.config.message_text:
        raise ActionError("Message text is not configured")
    text = resolve_variables(ctx.config.message_text, ctx.variables)
    message_id = ctx.messaging().send_text(contact.phone, text)
    _record_sent(ctx, contact, message_id, text)
    return ActionResult(details=f"Text message sent to {contact.name}")


def send_media(ctx: ActionContext) -> ActionResult:
    contact = _require_contact(ctx, "send_media")
    config = ctx.config
    if not config.media_url or not config.media_type:
        raise ActionError("Media URL or type is not configured")
    variables = ctx.variables
    url = resolve_variables(config.media_url, variables)
    caption = resolve_variables(config.caption, variables) if config.caption else None
    message_id = ctx.messaging().send_media(contact.phone, config.media_type, url, caption)
    _record_sent(ctx, contact, message_id, caption or url)
    return ActionResult(details=f"Media ({config.media_type}) sent to {contact.name}")


def send_interactive_message(ctx: ActionContext) -> ActionResult:
    contact = _require_contact(ctx, "send_interactive_message")
    config = ctx.config
    if not config.message_text or not config.buttons:
        raise ActionError("Message text or buttons are not configured")
    variables = ctx.variables
    text = resolve_variables(config.message_text, variables)
    buttons = [
        {"id": button.id, "text": resolve_variables(button.text, variables)} for button in config.buttons
    ]
    message_id = ctx.messaging().send_interactive(contact.phone, text, buttons)
    _record_sent(ctx, contact, message_id, text)
    return ActionResult(details=f"Interactive message sent to {contact.name}")
