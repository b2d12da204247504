import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    TIMESTAMP,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, UpdatedAtMixin, utcnow


automation_status_enum = Enum("active", "paused", name="automation_status")
automation_run_status_enum = Enum("running", "success", "failed", name="automation_run_status")
node_log_status_enum = Enum("success", "failed", name="automation_node_log_status")
sent_message_status_enum = Enum(
    "pending", "sent", "delivered", "read", "failed", name="sent_message_status"
)


class Profile(UpdatedAtMixin, Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, server_default=None
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    company_name: Mapped[Optional[str]] = mapped_column(String)
    company_description: Mapped[Optional[str]] = mapped_column(Text)
    meta_access_token: Mapped[Optional[str]] = mapped_column(Text)
    meta_waba_id: Mapped[Optional[str]] = mapped_column(String)
    meta_phone_number_id: Mapped[Optional[str]] = mapped_column(String, index=True)
    webhook_path_prefix: Mapped[Optional[str]] = mapped_column(String, unique=True)

    contacts = relationship("Contact", back_populates="user")
    automations = relationship("Automation", back_populates="user")
    templates = relationship("MessageTemplate", back_populates="user")


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (UniqueConstraint("user_id", "phone", name="uq_contact_phone"),)

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, server_default=None
    )
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    phone: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String)
    company: Mapped[Optional[str]] = mapped_column(String)
    tags: Mapped[List[str]] = mapped_column(ARRAY(String), server_default="{}", default=list)
    custom_fields: Mapped[dict] = mapped_column(JSONB, server_default="{}", default=dict)

    user = relationship("Profile", back_populates="contacts")


class MessageTemplate(Base):
    __tablename__ = "message_templates"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, server_default=None
    )
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    template_name: Mapped[str] = mapped_column(String, nullable=False)
    language: Mapped[str] = mapped_column(String, nullable=False, default="pt_BR", server_default="pt_BR")
    category: Mapped[str] = mapped_column(String, nullable=False, default="MARKETING", server_default="MARKETING")
    status: Mapped[str] = mapped_column(String, nullable=False, default="LOCAL", server_default="LOCAL")
    meta_id: Mapped[Optional[str]] = mapped_column(String)
    components: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    user = relationship("Profile", back_populates="templates")


class Automation(UpdatedAtMixin, Base):
    __tablename__ = "automations"
    __table_args__ = (Index("ix_automations_user_status", "user_id", "status"),)

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, server_default=None
    )
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(automation_status_enum, default="active", server_default="active")
    nodes: Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")
    edges: Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")

    user = relationship("Profile", back_populates="automations")
    runs = relationship("AutomationRun", back_populates="automation", cascade="all, delete-orphan")


class AutomationTrigger(Base):
    __tablename__ = "automation_triggers"
    __table_args__ = (
        UniqueConstraint("automation_id", "node_id", name="uq_automation_trigger_node"),
        Index("ix_automation_triggers_lookup", "user_id", "trigger_type", "trigger_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, server_default=None
    )
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    automation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automations.id", ondelete="CASCADE"), nullable=False
    )
    node_id: Mapped[str] = mapped_column(String, nullable=False)
    trigger_type: Mapped[str] = mapped_column(String, nullable=False)
    trigger_key: Mapped[Optional[str]] = mapped_column(String)


class AutomationRun(Base):
    __tablename__ = "automation_runs"
    __table_args__ = (Index("ix_automation_runs_automation_run_at", "automation_id", "run_at"),)

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, server_default=None
    )
    automation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automations.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("contacts.id", ondelete="SET NULL"))
    status: Mapped[str] = mapped_column(automation_run_status_enum, nullable=False, default="running")
    details: Mapped[Optional[str]] = mapped_column(Text)
    run_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    automation = relationship("Automation", back_populates="runs")


class AutomationNodeStat(Base):
    __tablename__ = "automation_node_stats"

    automation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automations.id", ondelete="CASCADE"), primary_key=True
    )
    node_id: Mapped[str] = mapped_column(String, primary_key=True)
    success_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    error_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_run_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))


class AutomationNodeLog(Base):
    __tablename__ = "automation_node_logs"
    __table_args__ = (Index("ix_automation_node_logs_run", "run_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, server_default=None
    )
    run_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automation_runs.id", ondelete="CASCADE"), nullable=False
    )
    automation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automations.id", ondelete="CASCADE"), nullable=False
    )
    node_id: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(node_log_status_enum, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text)


class ReceivedMessage(Base):
    __tablename__ = "received_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, server_default=None
    )
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    contact_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    meta_message_id: Mapped[Optional[str]] = mapped_column(String, unique=True)
    message_body: Mapped[str] = mapped_column(Text, nullable=False)


class SentMessage(Base):
    __tablename__ = "sent_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, server_default=None
    )
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    contact_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    automation_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("automation_runs.id", ondelete="SET NULL")
    )
    meta_message_id: Mapped[Optional[str]] = mapped_column(String, index=True)
    message_body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(sent_message_status_enum, default="sent", server_default="sent")
    delivered_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    read_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)

