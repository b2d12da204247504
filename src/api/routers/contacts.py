from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from api.deps import get_current_profile, get_template_cache
from db.base import to_uuid
from db.models import Contact, Profile
from db.session import get_db
from services.automation.contact_mapper import normalize_phone
from services.automation.triggers import handle_new_contact_event, handle_tag_added_event
from services.messaging import TemplateCache

router = APIRouter(prefix="/contacts", tags=["contacts"])


class ContactCreate(BaseModel):
    name: str
    phone: str
    email: EmailStr | None = None
    company: str | None = None
    tags: list[str] = []
    custom_fields: dict[str, Any] = {}


class ContactUpdate(BaseModel):
    name: str | None = None
    email: EmailStr | None = None
    company: str | None = None
    tags: list[str] | None = None
    custom_fields: dict[str, Any] | None = None


def serialize_contact(contact: Contact) -> dict:
    return {
        "id": str(contact.id),
        "name": contact.name,
        "phone": contact.phone,
        "email": contact.email,
        "company": contact.company,
        "tags": list(contact.tags or []),
        "custom_fields": dict(contact.custom_fields or {}),
    }


@router.get("", response_model=list[dict])
def list_contacts(
    q: str | None = None,
    tag: str | None = None,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    query = db.query(Contact).filter(Contact.user_id == current_profile.id)
    if q:
        query = query.filter(Contact.name.ilike(f"%{q}%"))
    if tag:
        query = query.filter(Contact.tags.any(tag))
    return [serialize_contact(c) for c in query.order_by(Contact.created_at.desc()).all()]


@router.post("", response_model=dict)
def create_contact(
    payload: ContactCreate,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    template_cache: Optional[TemplateCache] = Depends(get_template_cache),
):
    phone = normalize_phone(payload.phone)
    if not phone:
        raise HTTPException(status_code=400, detail="Invalid phone number")
    existing = db.query(Contact).filter(Contact.user_id == current_profile.id, Contact.phone == phone).first()
    if existing:
        raise HTTPException(status_code=400, detail="Phone already exists")
    tags = list(dict.fromkeys(payload.tags))
    contact = Contact(
        user_id=current_profile.id,
        name=payload.name,
        phone=phone,
        email=payload.email,
        company=payload.company,
        tags=tags,
        custom_fields=payload.custom_fields,
    )
    db.add(contact)
    db.commit()
    db.refresh(contact)

    handle_new_contact_event(db, current_profile.id, contact, template_cache)
    for tag in tags:
        handle_tag_added_event(db, current_profile.id, contact, tag, template_cache)
    db.refresh(contact)
    return serialize_contact(contact)


@router.patch("/{contact_id}", response_model=dict)
def update_contact(
    contact_id: str,
    payload: ContactUpdate,
    current_profile: Profile = Depends(get_current_profile),
    db: Session = Depends(get_db),
    template_cache: Optional[TemplateCache] = Depends(get_template_cache),
):
    try:
        contact_uuid = to_uuid(contact_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Contact not found")
    contact = db.query(Contact).filter(Contact.id == contact_uuid, Contact.user_id == current_profile.id).first()
    if not contact:
        raise HTTPException(status_code=404, detail="Contact not found")

    previous_tags = set(contact.tags or [])
    for field, value in payload.model_dump(exclude_unset=True).items():
        if field in ("tags", "custom_fields") and value is None:
            continue
        if field == "tags":
            value = list(dict.fromkeys(value))
        setattr(contact, field, value)
    db.commit()
    db.refresh(contact)

    for tag in [t for t in contact.tags or [] if t not in previous_tags]:
        handle_tag_added_event(db, current_profile.id, contact, tag, template_cache)
    db.refresh(contact)
    return serialize_contact(contact)
