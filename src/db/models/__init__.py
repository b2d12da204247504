from .models import (
    Automation,
    AutomationNodeLog,
    AutomationNodeStat,
    AutomationRun,
    AutomationTrigger,
    Contact,
    MessageTemplate,
    Profile,
    ReceivedMessage,
    SentMessage,
)

__all__ = [
    "Automation",
    "AutomationNodeLog",
    "AutomationNodeStat",
    "AutomationRun",
    "AutomationTrigger",
    "Contact",
    "MessageTemplate",
    "Profile",
    "ReceivedMessage",
    "SentMessage",
]
