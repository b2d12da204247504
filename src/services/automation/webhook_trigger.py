"""Inbound ``/trigger/{prefix}_{node_id}`` webhooks for ``webhook_received`` nodes."""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from core.errors import TriggerError
from core.logging import get_logger, log_extra
from core.security import extract_webhook_key, webhook_key_matches
from db.base import to_uuid
from db.models import Automation, AutomationTrigger, Profile
from services.automation.contact_mapper import apply_mapping_rules, find_phone_rule
from services.automation.engine import execute_automation
from services.automation.nodes import AutomationNode
from services.automation.triggers import handle_new_contact_event, handle_tag_added_event, load_graph
from services.messaging import TemplateCache

logger = get_logger(__name__)

MISSING_PHONE_DETAIL = "phone number missing in payload mapping"


@dataclass
class WebhookTarget:
    profile: Profile
    automation: Automation
    node: AutomationNode


def parse_slug(slug: str) -> Tuple[str, str]:
    # Prefixes are hex, so the first underscore ends the prefix; node ids may contain more.
    segment = (slug or "").strip("/").rsplit("/", 1)[-1]
    prefix, sep, node_id = segment.partition("_")
    if not sep or not prefix or not node_id:
        raise TriggerError(400, "Invalid webhook URL format")
    return prefix, node_id


def _find_profile(db: Session, prefix: str) -> Optional[Profile]:
    profile = db.query(Profile).filter(Profile.webhook_path_prefix == prefix).first()
    if profile is not None:
        return profile
    try:
        profile_id = to_uuid(prefix)
    except ValueError:
        return None
    return db.query(Profile).filter(Profile.id == profile_id).first()


def _node_in(automation: Optional[Automation], node_id: str) -> Optional[AutomationNode]:
    if automation is None:
        return None
    graph = load_graph(automation)
    return graph.get_node(node_id) if graph is not None else None


def resolve_target(db: Session, slug: str) -> WebhookTarget:
    prefix, node_id = parse_slug(slug)
    profile = _find_profile(db, prefix)
    if profile is None:
        raise TriggerError(404, "Webhook not found")

    index_row = (
        db.query(AutomationTrigger)
        .filter(AutomationTrigger.user_id == profile.id, AutomationTrigger.node_id == node_id)
        .first()
    )
    if index_row is not None:
        automation = (
            db.query(Automation)
            .filter(Automation.id == index_row.automation_id, Automation.user_id == profile.id)
            .first()
        )
        node = _node_in(automation, node_id)
        if node is not None:
            return WebhookTarget(profile=profile, automation=automation, node=node)

    # Index rows are missing for graphs saved before the index existed.
    for automation in db.query(Automation).filter(Automation.user_id == profile.id).all():
        node = _node_in(automation, node_id)
        if node is not None:
            return WebhookTarget(profile=profile, automation=automation, node=node)
    raise TriggerError(404, "Automation trigger not found")


def capture_sample(db: Session, automation: Automation, node_id: str, payload: Any) -> None:
    nodes = []
    for raw in automation.nodes or []:
        if raw.get("id") == node_id:
            data = dict(raw.get("data") or {})
            data["config"] = {**(data.get("config") or {}), "last_captured_data": payload}
            raw = {**raw, "data": data}
        nodes.append(raw)
    automation.nodes = nodes
    db.add(automation)
    db.commit()


def _process_event(
    db: Session, target: WebhookTarget, event: Any, template_cache: Optional[TemplateCache]
) -> Dict[str, Any]:
    profile, automation, node = target.profile, target.automation, target.node
    mapping = apply_mapping_rules(db, profile, event, node.data.config.data_mapping)
    if mapping is None:
        logger.warning(
            "Webhook payload has no phone value",
            **log_extra(profile.id, automation_id=automation.id, node_id=node.id),
        )
        return {"status": "skipped", "detail": MISSING_PHONE_DETAIL}

    run = execute_automation(db, automation, mapping.contact, node.id, event, template_cache=template_cache)
    if mapping.is_new:
        handle_new_contact_event(db, profile.id, mapping.contact, template_cache)
    for tag in mapping.newly_added_tags:
        handle_tag_added_event(db, profile.id, mapping.contact, tag, template_cache)
    return {
        "status": "processed",
        "contact_id": str(mapping.contact.id),
        "run_id": str(run.id) if run is not None else None,
        "run_status": run.status if run is not None else None,
    }


def handle_webhook_trigger(
    db: Session,
    slug: str,
    method: str,
    payload: Any,
    headers: Mapping[str, str],
    template_cache: Optional[TemplateCache] = None,
) -> Dict[str, Any]:
    target = resolve_target(db, slug)
    node = target.node
    if node.kind != "webhook_received":
        raise TriggerError(400, "Invalid trigger node")

    config = node.data.config
    if config.verify_key and not webhook_key_matches(config.verify_key, extract_webhook_key(headers)):
        raise TriggerError(401, "Invalid verification key")

    if config.last_captured_data is None:
        capture_sample(db, target.automation, node.id, payload)
        logger.info(
            "Webhook sample captured",
            **log_extra(target.profile.id, automation_id=target.automation.id, node_id=node.id, method=method),
        )
        return {"status": "captured", "automation_id": str(target.automation.id), "node_id": node.id}

    if target.automation.status != "active":
        raise TriggerError(404, "Automation trigger not found or is inactive")
    find_phone_rule(config.data_mapping)

    if isinstance(payload, list):
        events: List[Dict[str, Any]] = [_process_event(db, target, event, template_cache) for event in payload]
        return {"status": "processed", "events": events}
    return _process_event(db, target, payload, template_cache)
