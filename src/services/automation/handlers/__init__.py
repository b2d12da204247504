from typing import Dict

from services.automation.nodes import TRIGGER_TYPES
from services.automation.types import ActionContext, ActionHandler, ActionResult
from .contact import add_tag, remove_tag, set_custom_field
from .integrations import send_webhook
from .logic import condition, split_path
from .messaging import send_interactive_message, send_media, send_template, send_text_message


def trigger_fired(ctx: ActionContext) -> ActionResult:
    return ActionResult(details=f"Trigger '{ctx.node.data.display_name}' fired")


def pass_through(ctx: ActionContext) -> ActionResult:
    return ActionResult(details=f"No handler for '{ctx.node.kind}', continuing")


ACTION_HANDLERS: Dict[str, ActionHandler] = {
    **{kind: trigger_fired for kind in TRIGGER_TYPES},
    "send_template": send_template,
    "send_text_message": send_text_message,
    "send_media": send_media,
    "send_interactive_message": send_interactive_message,
    "add_tag": add_tag,
    "remove_tag": remove_tag,
    "set_custom_field": set_custom_field,
    "send_webhook": send_webhook,
    "condition": condition,
    "split_path": split_path,
}


def get_handler(kind: str) -> ActionHandler:
    return ACTION_HANDLERS.get(kind, pass_through)


__all__ = ["ACTION_HANDLERS", "get_handler", "pass_through", "trigger_fired"]
