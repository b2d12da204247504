from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class TemplateDetails:
    name: str
    language: str


class MessagingProvider(ABC):
    """WhatsApp-style outbound messaging. Every send returns the provider message id."""

    @abstractmethod
    def send_template(
        self,
        to: str,
        template_name: str,
        language: str,
        components: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        raise NotImplementedError

    @abstractmethod
    def send_text(self, to: str, text: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def send_media(self, to: str, media_type: str, url: str, caption: Optional[str] = None) -> str:
        raise NotImplementedError

    @abstractmethod
    def send_interactive(self, to: str, body_text: str, buttons: List[Dict[str, str]]) -> str:
        raise NotImplementedError

    @abstractmethod
    def get_template_details(self, template_id: str) -> Optional[TemplateDetails]:
        raise NotImplementedError
