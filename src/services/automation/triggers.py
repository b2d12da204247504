from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

from core.logging import get_logger, log_extra
from db.models import Automation, AutomationRun, AutomationTrigger
from services.automation.engine import execute_automation, to_contact_state
from services.automation.nodes import AutomationGraph, AutomationNode
from services.messaging import TemplateCache

logger = get_logger(__name__)


def trigger_key_for(node: AutomationNode) -> Optional[str]:
    config = node.data.config
    if node.kind == "message_received_with_keyword" and getattr(config, "keyword", None):
        return config.keyword.lower()
    if node.kind == "new_contact_with_tag" and getattr(config, "tag", None):
        return config.tag.lower()
    if node.kind == "button_clicked" and getattr(config, "button_payload", None):
        return config.button_payload
    return None


def sync_automation_triggers(db: Session, automation: Automation) -> List[AutomationTrigger]:
    """Rebuild the trigger index rows of one automation from its graph."""
    db.query(AutomationTrigger).filter(AutomationTrigger.automation_id == automation.id).delete()
    rows = [
        AutomationTrigger(
            user_id=automation.user_id,
            automation_id=automation.id,
            node_id=node.id,
            trigger_type=node.kind,
            trigger_key=trigger_key_for(node),
        )
        for node in AutomationGraph.from_automation(automation).trigger_nodes()
    ]
    for row in rows:
        db.add(row)
    db.commit()
    return rows


def load_graph(automation: Automation) -> Optional[AutomationGraph]:
    try:
        return AutomationGraph.from_automation(automation)
    except ValidationError:
        logger.warning(
            "Skipping automation with invalid graph",
            **log_extra(automation.user_id, automation_id=automation.id),
        )
        return None


def find_trigger_nodes(db: Session, user_id: Any, trigger_type: str) -> List[Tuple[Automation, AutomationNode]]:
    """Active automations and their trigger nodes of ``trigger_type``.

    Candidates come from the trigger index; each one is confirmed against the
    stored graph before it is returned.
    """
    index_rows = (
        db.query(AutomationTrigger)
        .filter(AutomationTrigger.user_id == user_id, AutomationTrigger.trigger_type == trigger_type)
        .all()
    )
    graphs: Dict[str, Tuple[Automation, Optional[AutomationGraph]]] = {}
    matches: List[Tuple[Automation, AutomationNode]] = []
    for row in index_rows:
        key = str(row.automation_id)
        if key not in graphs:
            automation = (
                db.query(Automation)
                .filter(Automation.id == row.automation_id, Automation.status == "active")
                .first()
            )
            graphs[key] = (automation, load_graph(automation) if automation is not None else None)
        automation, graph = graphs[key]
        if graph is None:
            continue
        node = graph.get_node(row.node_id)
        if node is not None and node.is_trigger and node.kind == trigger_type:
            matches.append((automation, node))
    return matches


def _dispatch(
    db: Session,
    automation: Automation,
    contact: Any,
    node: AutomationNode,
    trigger_data: Dict[str, Any],
    template_cache: Optional[TemplateCache],
) -> Optional[AutomationRun]:
    logger.info(
        "Dispatching automation",
        **log_extra(automation.user_id, automation_id=automation.id, node_id=node.id, trigger=trigger_data.get("type")),
    )
    return execute_automation(db, automation, contact, node.id, trigger_data, template_cache=template_cache)


def handle_new_contact_event(
    db: Session, user_id: Any, contact: Any, template_cache: Optional[TemplateCache] = None
) -> List[AutomationRun]:
    state = to_contact_state(contact)
    trigger_data = {"type": "new_contact", "payload": {"contact": state.model_dump(mode="json")}}
    runs = []
    seen = set()
    for automation, node in find_trigger_nodes(db, user_id, "new_contact"):
        # One run per automation even when it has several new_contact nodes.
        if automation.id in seen:
            continue
        seen.add(automation.id)
        run = _dispatch(db, automation, state, node, trigger_data, template_cache)
        if run is not None:
            runs.append(run)
    return runs


def handle_tag_added_event(
    db: Session, user_id: Any, contact: Any, tag: str, template_cache: Optional[TemplateCache] = None
) -> List[AutomationRun]:
    state = to_contact_state(contact)
    trigger_data = {"type": "tag_added", "payload": {"contact": state.model_dump(mode="json"), "addedTag": tag}}
    runs = []
    for automation, node in find_trigger_nodes(db, user_id, "new_contact_with_tag"):
        expected = node.data.config.tag
        if not expected or expected.lower() != tag.lower():
            continue
        run = _dispatch(db, automation, state, node, trigger_data, template_cache)
        if run is not None:
            runs.append(run)
    return runs


def message_text_and_payload(message: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    """Lowercased text and button reply id of an inbound Cloud API message."""
    if message.get("type") == "text":
        return str((message.get("text") or {}).get("body", "")).lower(), None
    if message.get("type") == "interactive":
        interactive = message.get("interactive") or {}
        if interactive.get("type") == "button_reply":
            reply = interactive.get("button_reply") or {}
            return str(reply.get("title", "")).lower(), reply.get("id")
    if message.get("type") == "button":
        button = message.get("button") or {}
        return str(button.get("text", "")).lower(), button.get("payload")
    return "", None


def handle_message_event(
    db: Session,
    user_id: Any,
    contact: Any,
    message: Dict[str, Any],
    template_cache: Optional[TemplateCache] = None,
) -> List[AutomationRun]:
    state = to_contact_state(contact)
    text, button_payload = message_text_and_payload(message)
    trigger_data = {"type": "meta_message", "payload": message}
    runs = []

    for automation, node in find_trigger_nodes(db, user_id, "message_received_with_keyword"):
        keyword = node.data.config.keyword
        if keyword and keyword.lower() in text:
            run = _dispatch(db, automation, state, node, trigger_data, template_cache)
            if run is not None:
                runs.append(run)

    if button_payload:
        for automation, node in find_trigger_nodes(db, user_id, "button_clicked"):
            if node.data.config.button_payload == button_payload:
                run = _dispatch(db, automation, state, node, trigger_data, template_cache)
                if run is not None:
                    runs.append(run)
    return runs
