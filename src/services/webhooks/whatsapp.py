"""Meta WhatsApp Cloud API webhook: verification, inbound messages, statuses."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.config import get_settings
from core.logging import get_logger, log_extra
from db.models import Profile, ReceivedMessage, SentMessage
from services.automation.contact_mapper import find_or_create_contact_by_phone
from services.automation.triggers import (
    handle_message_event,
    handle_new_contact_event,
    handle_tag_added_event,
)
from services.messaging import TemplateCache

logger = get_logger(__name__)

DEFAULT_WHATSAPP_CONTACT_NAME = "WhatsApp Contact"
DELIVERY_STATUSES = ("sent", "delivered", "read", "failed")


def verify_subscription(mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
    """Challenge to echo back, or ``None`` when verification fails."""
    expected = get_settings().meta_verify_token
    if mode == "subscribe" and expected and token == expected:
        return challenge or ""
    return None


def message_body(message: Dict[str, Any]) -> str:
    message_type = message.get("type")
    if message_type == "text" and (message.get("text") or {}).get("body"):
        return message["text"]["body"]
    if message_type == "interactive":
        reply = (message.get("interactive") or {}).get("button_reply")
        if reply:
            return f'Button clicked: "{reply.get("title", "")}"'
    return f"[{message_type}]"


def _timestamp(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)


def process_incoming_message(
    db: Session,
    profile: Profile,
    message: Dict[str, Any],
    contacts: Optional[List[Dict[str, Any]]] = None,
    template_cache: Optional[TemplateCache] = None,
) -> Optional[ReceivedMessage]:
    meta_message_id = message.get("id")
    if meta_message_id and (
        db.query(ReceivedMessage).filter(ReceivedMessage.meta_message_id == meta_message_id).first()
    ):
        logger.info("Duplicate inbound message ignored", **log_extra(profile.id, meta_message_id=meta_message_id))
        return None

    name = ((contacts or [{}])[0].get("profile") or {}).get("name") or DEFAULT_WHATSAPP_CONTACT_NAME
    contact, is_new = find_or_create_contact_by_phone(db, profile.id, message.get("from"), name)

    received = ReceivedMessage(
        user_id=profile.id,
        contact_id=contact.id,
        meta_message_id=meta_message_id,
        message_body=message_body(message),
    )
    db.add(received)
    db.commit()

    handle_message_event(db, profile.id, contact, message, template_cache)
    if is_new:
        handle_new_contact_event(db, profile.id, contact, template_cache)
        for tag in contact.tags or []:
            handle_tag_added_event(db, profile.id, contact, tag, template_cache)
    return received


def process_status_update(db: Session, status: Dict[str, Any]) -> Optional[SentMessage]:
    new_status = status.get("status")
    if new_status not in DELIVERY_STATUSES:
        logger.warning("Unknown delivery status ignored", extra={"status": str(new_status)})
        return None
    sent = db.query(SentMessage).filter(SentMessage.meta_message_id == status.get("id")).first()
    if sent is None:
        return None

    timestamp = _timestamp(status.get("timestamp"))
    sent.status = new_status
    if new_status == "delivered":
        sent.delivered_at = timestamp
    elif new_status == "read":
        sent.read_at = timestamp
        sent.delivered_at = sent.delivered_at or timestamp
    elif new_status == "failed" and status.get("errors"):
        error = status["errors"][0] or {}
        sent.error_message = f"{error.get('title')} (code {error.get('code')})"
    db.add(sent)
    db.commit()
    return sent


def process_webhook_payload(
    db: Session, payload: Dict[str, Any], template_cache: Optional[TemplateCache] = None
) -> Dict[str, int]:
    counts = {"messages": 0, "statuses": 0}
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "messages":
                continue
            value = change.get("value") or {}
            for status in value.get("statuses") or []:
                if process_status_update(db, status) is not None:
                    counts["statuses"] += 1

            messages = value.get("messages") or []
            if not messages:
                continue
            phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
            profile = db.query(Profile).filter(Profile.meta_phone_number_id == phone_number_id).first()
            if profile is None:
                logger.warning("No profile for phone number id", extra={"phone_number_id": str(phone_number_id)})
                continue
            for message in messages:
                if process_incoming_message(db, profile, message, value.get("contacts"), template_cache):
                    counts["messages"] += 1
    return counts
