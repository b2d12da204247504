import uuid
from typing import Any, Dict, List, Optional

from core.logging import get_logger
from .provider import MessagingProvider, TemplateDetails

logger = get_logger(__name__)


class MockMessagingProvider(MessagingProvider):
    """Records sends in memory instead of calling the WhatsApp API."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    def _record(self, kind: str, to: str, **payload: Any) -> str:
        message_id = f"mock.{uuid.uuid4().hex}"
        self.sent.append({"id": message_id, "kind": kind, "to": to, **payload})
        logger.info("Mock message sent", extra={"kind": kind, "to": to, "message_id": message_id})
        return message_id

    def send_template(
        self,
        to: str,
        template_name: str,
        language: str,
        components: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        return self._record("template", to, template_name=template_name, language=language, components=components)

    def send_text(self, to: str, text: str) -> str:
        return self._record("text", to, text=text)

    def send_media(self, to: str, media_type: str, url: str, caption: Optional[str] = None) -> str:
        return self._record("media", to, media_type=media_type, url=url, caption=caption)

    def send_interactive(self, to: str, body_text: str, buttons: List[Dict[str, str]]) -> str:
        return self._record("interactive", to, body_text=body_text, buttons=buttons[:3])

    def get_template_details(self, template_id: str) -> Optional[TemplateDetails]:
        return None
