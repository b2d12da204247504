from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from services.automation.nodes import AutomationNode
from services.automation.variables import build_context

if TYPE_CHECKING:
    from db.models import Profile
    from services.messaging import MessagingProvider, TemplateCache


class ContactState(BaseModel):
    """Immutable snapshot of a contact threaded through one run."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    user_id: Optional[str] = None
    name: str = ""
    phone: str = ""
    email: Optional[str] = None
    company: Optional[str] = None
    tags: list[str] = []
    custom_fields: dict[str, Any] = {}

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else None

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, value: Any) -> Any:
        return list(value) if value else []

    @field_validator("custom_fields", mode="before")
    @classmethod
    def default_custom_fields(cls, value: Any) -> Any:
        return dict(value) if value else {}


ProviderFactory = Callable[["Profile", Optional["TemplateCache"]], "MessagingProvider"]


@dataclass
class ActionContext:
    profile: "Profile"
    contact: Optional[ContactState]
    node: AutomationNode
    trigger: Any
    db: Session
    provider_factory: ProviderFactory
    template_cache: Optional["TemplateCache"] = None
    run_id: Any = None
    _provider: Optional["MessagingProvider"] = field(default=None, init=False, repr=False)

    @property
    def config(self) -> Any:
        return self.node.data.config

    @property
    def variables(self) -> dict[str, Any]:
        return build_context(self.contact, self.trigger)

    def messaging(self) -> "MessagingProvider":
        if self._provider is None:
            self._provider = self.provider_factory(self.profile, self.template_cache)
        return self._provider


@dataclass
class ActionResult:
    details: Optional[str] = None
    updated_contact: Optional[ContactState] = None
    next_node_handle: Optional[str] = None


ActionHandler = Callable[[ActionContext], ActionResult]
