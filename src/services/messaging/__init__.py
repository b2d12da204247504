from typing import Any, Optional

from core.config import get_settings
from .meta_provider import MetaConfig, MetaWhatsAppProvider, sanitize_phone
from .mock_provider import MockMessagingProvider
from .provider import MessagingProvider, TemplateDetails
from .template_cache import TemplateCache


def get_messaging_provider(profile: Any, template_cache: Optional[TemplateCache] = None) -> MessagingProvider:
    settings = get_settings()
    backend = settings.messaging_backend.lower()
    if backend == "mock":
        return MockMessagingProvider()
    return MetaWhatsAppProvider(
        MetaConfig.from_profile(profile),
        base_url=settings.meta_graph_api_url,
        timeout=settings.automation_default_timeout_seconds,
        template_cache=template_cache,
    )


__all__ = [
    "MessagingProvider",
    "MetaConfig",
    "MetaWhatsAppProvider",
    "MockMessagingProvider",
    "TemplateCache",
    "TemplateDetails",
    "get_messaging_provider",
    "sanitize_phone",
]
