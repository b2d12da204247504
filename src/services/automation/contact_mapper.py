import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import get_settings
from core.errors import MappingError
from core.logging import get_logger, log_extra
from db.models import Contact, Profile
from services.automation.nodes import DataMappingRule
from services.automation.variables import get_value_from_path

logger = get_logger(__name__)

NEW_LEAD_TAG = "new-lead"
DEFAULT_WEBHOOK_CONTACT_NAME = "New Webhook Lead"
NATIONAL_NUMBER_LENGTHS = (10, 11)


def normalize_phone(phone: Any, country_code: Optional[str] = None) -> str:
    """Digits only; national numbers (area code + number) get the country code."""
    digits = re.sub(r"\D", "", str(phone or ""))
    if len(digits) in NATIONAL_NUMBER_LENGTHS:
        digits = (country_code or get_settings().default_country_code) + digits
    return digits


def find_or_create_contact_by_phone(
    db: Session,
    user_id: Any,
    phone: Any,
    name: Optional[str] = None,
    initial_tags: Iterable[str] = (NEW_LEAD_TAG,),
) -> Tuple[Contact, bool]:
    normalized = normalize_phone(phone)
    if not normalized:
        raise MappingError("Phone number has no digits")

    contact = db.query(Contact).filter(Contact.user_id == user_id, Contact.phone == normalized).first()
    if contact is not None:
        return contact, False

    contact = Contact(
        user_id=user_id,
        name=name or normalized,
        phone=normalized,
        tags=list(initial_tags),
        custom_fields={},
    )
    db.add(contact)
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently by another request.
        db.rollback()
        existing = db.query(Contact).filter(Contact.user_id == user_id, Contact.phone == normalized).first()
        if existing is not None:
            return existing, False
        raise
    db.refresh(contact)
    logger.info("Contact created", **log_extra(user_id, contact_id=contact.id))
    return contact, True


@dataclass
class MappingResult:
    contact: Contact
    is_new: bool
    newly_added_tags: List[str] = field(default_factory=list)


def find_phone_rule(rules: Sequence[DataMappingRule]) -> DataMappingRule:
    for rule in rules:
        if rule.destination == "phone" and rule.source:
            return rule
    raise MappingError("No data mapping rule maps a payload field to the contact phone")


def apply_mapping_rules(
    db: Session, profile: Profile, payload: Any, rules: Sequence[DataMappingRule]
) -> Optional[MappingResult]:
    """Find or create the contact described by ``payload`` and apply the rules.

    Returns ``None`` when the payload has no usable phone at the phone rule's
    path (missing, or without any digits).
    All non-phone rules are written in one contact update.
    """
    phone_rule = find_phone_rule(rules)
    phone_value = get_value_from_path(payload, phone_rule.source)
    if phone_value is None or not normalize_phone(phone_value):
        return None

    name_rule = next((r for r in rules if r.destination == "name" and r.source), None)
    name_value = get_value_from_path(payload, name_rule.source) if name_rule else None
    contact, is_new = find_or_create_contact_by_phone(
        db, profile.id, phone_value, str(name_value) if name_value is not None else DEFAULT_WEBHOOK_CONTACT_NAME
    )

    original_tags = [] if is_new else list(contact.tags or [])
    tags = list(contact.tags or [])
    custom_fields = dict(contact.custom_fields or {})
    newly_added: List[str] = []
    changed = False

    for rule in rules:
        if not rule.source or rule.destination == "phone":
            continue
        value = get_value_from_path(payload, rule.source)
        if value is None:
            continue
        if rule.destination == "name" and contact.name != str(value):
            contact.name = str(value)
            changed = True
        elif rule.destination == "email" and contact.email != str(value):
            contact.email = str(value)
            changed = True
        elif rule.destination == "tag":
            tag = str(value)
            if tag not in tags:
                tags.append(tag)
                changed = True
                if tag not in original_tags:
                    newly_added.append(tag)
        elif rule.destination == "custom_field" and rule.destination_key:
            if custom_fields.get(rule.destination_key) != value:
                custom_fields[rule.destination_key] = value
                changed = True

    if changed:
        contact.tags = tags
        contact.custom_fields = custom_fields
        db.add(contact)
        db.commit()
        db.refresh(contact)
    return MappingResult(contact=contact, is_new=is_new, newly_added_tags=newly_added)
