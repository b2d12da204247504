import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from core.errors import ActionError, ProviderError
from core.logging import get_logger
from .provider import MessagingProvider, TemplateDetails
from .template_cache import TemplateCache

logger = get_logger(__name__)

MAX_INTERACTIVE_BUTTONS = 3


@dataclass(frozen=True)
class MetaConfig:
    access_token: str
    waba_id: str
    phone_number_id: str

    @classmethod
    def from_profile(cls, profile: Any) -> "MetaConfig":
        config = cls(
            access_token=profile.meta_access_token or "",
            waba_id=profile.meta_waba_id or "",
            phone_number_id=profile.meta_phone_number_id or "",
        )
        if not config.access_token or not config.waba_id or not config.phone_number_id:
            raise ActionError(f"Meta configuration missing in profile for user {profile.id}")
        return config


def sanitize_phone(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text


class MetaWhatsAppProvider(MessagingProvider):
    """WhatsApp Cloud API client (Graph API ``/{phone_number_id}/messages``)."""

    def __init__(
        self,
        config: MetaConfig,
        base_url: str = "https://graph.facebook.com/v19.0",
        timeout: float = 10,
        template_cache: Optional[TemplateCache] = None,
    ) -> None:
        self.config = config
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.template_cache = template_cache

    def _request(self, method: str, path: str, payload: Optional[dict] = None, params: Optional[dict] = None) -> dict:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }
        try:
            response = requests.request(
                method,
                url,
                json=payload,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Meta API request failed: {exc}") from exc

        if not response.ok:
            message = _error_message(response)
            logger.warning(
                "Meta API rejected request",
                extra={"status_code": response.status_code, "path": path, "error": message},
            )
            raise ProviderError(
                f"Meta API error ({response.status_code}): {message}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()

    def _send(self, to: str, message_type: str, content: Dict[str, Any]) -> str:
        payload = {
            "messaging_product": "whatsapp",
            "to": sanitize_phone(to),
            "type": message_type,
            message_type: content,
        }
        data = self._request("POST", f"{self.config.phone_number_id}/messages", payload=payload)
        messages = data.get("messages") or []
        if not messages or not messages[0].get("id"):
            raise ProviderError("Meta API response did not include a message id", body=str(data))
        return str(messages[0]["id"])

    def send_template(
        self,
        to: str,
        template_name: str,
        language: str,
        components: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        content: Dict[str, Any] = {"name": template_name, "language": {"code": language}}
        if components:
            content["components"] = components
        return self._send(to, "template", content)

    def send_text(self, to: str, text: str) -> str:
        return self._send(to, "text", {"preview_url": True, "body": text})

    def send_media(self, to: str, media_type: str, url: str, caption: Optional[str] = None) -> str:
        content: Dict[str, Any] = {"link": url}
        if caption:
            content["caption"] = caption
        return self._send(to, media_type, content)

    def send_interactive(self, to: str, body_text: str, buttons: List[Dict[str, str]]) -> str:
        content = {
            "type": "button",
            "body": {"text": body_text},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": button["id"], "title": button["text"]}}
                    for button in buttons[:MAX_INTERACTIVE_BUTTONS]
                ]
            },
        }
        return self._send(to, "interactive", content)

    def get_template_details(self, template_id: str) -> Optional[TemplateDetails]:
        if not template_id:
            raise ActionError("Meta template id is required")
        if self.template_cache is not None:
            cached = self.template_cache.get(template_id)
            if cached is not None:
                return cached
        data = self._request("GET", template_id, params={"fields": "name,language"})
        details = TemplateDetails(name=data["name"], language=data["language"])
        if self.template_cache is not None:
            self.template_cache.set(template_id, details)
        return details
