from . import auth, automations, contacts, triggers, webhooks

__all__ = [
    "auth",
    "automations",
    "contacts",
    "triggers",
    "webhooks",
]
