from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, model_validator

TRIGGER_TYPES = (
    "new_contact",
    "new_contact_with_tag",
    "message_received_with_keyword",
    "button_clicked",
    "webhook_received",
)
ACTION_TYPES = (
    "send_template",
    "send_text_message",
    "send_media",
    "send_interactive_message",
    "add_tag",
    "remove_tag",
    "set_custom_field",
    "send_webhook",
)
LOGIC_TYPES = ("condition", "split_path")
NODE_KINDS = TRIGGER_TYPES + ACTION_TYPES + LOGIC_TYPES


class NodeConfig(BaseModel):
    """Base for every node config; unknown keys are kept for the editor."""

    model_config = ConfigDict(extra="allow")


# Triggers


class NewContactConfig(NodeConfig):
    pass


class NewContactWithTagConfig(NodeConfig):
    tag: str | None = None


class KeywordTriggerConfig(NodeConfig):
    keyword: str | None = None


class ButtonClickedConfig(NodeConfig):
    button_payload: str | None = None


class DataMappingRule(BaseModel):
    source: str | None = None
    destination: Literal["phone", "name", "email", "tag", "custom_field"]
    destination_key: str | None = None


class WebhookReceivedConfig(NodeConfig):
    data_mapping: list[DataMappingRule] = Field(default_factory=list)
    last_captured_data: Any = None
    verify_key: str | None = None

    def rule_for(self, destination: str) -> DataMappingRule | None:
        for rule in self.data_mapping:
            if rule.destination == destination and rule.source:
                return rule
        return None


# Actions


class SendTemplateConfig(NodeConfig):
    template_id: str | None = None

    def placeholder_value(self, placeholder: str) -> str:
        value = (self.model_extra or {}).get(placeholder)
        return "" if value is None else str(value)


class SendTextMessageConfig(NodeConfig):
    message_text: str | None = None


class SendMediaConfig(NodeConfig):
    media_url: str | None = None
    media_type: Literal["image", "video", "document"] | None = None
    caption: str | None = None


class InteractiveButton(BaseModel):
    id: str
    text: str


class SendInteractiveMessageConfig(NodeConfig):
    message_text: str | None = None
    buttons: list[InteractiveButton] | None = None


class TagConfig(NodeConfig):
    tag: str | None = None


class SetCustomFieldConfig(NodeConfig):
    field_name: str | None = None
    field_value: str = ""


class KeyValue(BaseModel):
    key: str = ""
    value: str = ""


class SendWebhookConfig(NodeConfig):
    url: str | None = None
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: str | list[KeyValue] | None = None
    body: str | None = None
    content_type: Literal["json", "form_urlencoded"] = "json"
    body_params: list[KeyValue] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def upper_method(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("method"), str):
            data = {**data, "method": data["method"].upper()}
        return data


# Logic


class ConditionConfig(NodeConfig):
    field: str = ""
    operator: Literal[
        "contains", "not_contains", "equals", "not_equals", "starts_with", "is_empty", "is_not_empty"
    ] = "equals"
    value: str = ""


class SplitPathConfig(NodeConfig):
    branches: list[str] = Field(default_factory=lambda: ["a", "b"])
    weights: list[float] | None = None

    @model_validator(mode="after")
    def validate_weights(self) -> "SplitPathConfig":
        if not self.branches:
            raise ValueError("split_path needs at least one branch")
        if self.weights is not None and len(self.weights) != len(self.branches):
            raise ValueError("split_path weights must match branches")
        return self


CONFIG_MODELS: dict[str, type[NodeConfig]] = {
    "new_contact": NewContactConfig,
    "new_contact_with_tag": NewContactWithTagConfig,
    "message_received_with_keyword": KeywordTriggerConfig,
    "button_clicked": ButtonClickedConfig,
    "webhook_received": WebhookReceivedConfig,
    "send_template": SendTemplateConfig,
    "send_text_message": SendTextMessageConfig,
    "send_media": SendMediaConfig,
    "send_interactive_message": SendInteractiveMessageConfig,
    "add_tag": TagConfig,
    "remove_tag": TagConfig,
    "set_custom_field": SetCustomFieldConfig,
    "send_webhook": SendWebhookConfig,
    "condition": ConditionConfig,
    "split_path": SplitPathConfig,
}


class NodeData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    node_type: Literal["trigger", "action", "logic"] = Field("action", alias="nodeType")
    type: str
    label: str = ""
    config: SerializeAsAny[NodeConfig] = Field(default_factory=NodeConfig)

    @model_validator(mode="before")
    @classmethod
    def parse_config(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        config = data.get("config")
        if isinstance(config, NodeConfig):
            return data
        model = CONFIG_MODELS.get(data.get("type", ""), NodeConfig)
        return {**data, "config": model.model_validate(config or {})}

    @property
    def display_name(self) -> str:
        return self.label or self.type


class AutomationNode(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str | None = None
    data: NodeData

    @property
    def kind(self) -> str:
        return self.data.type

    @property
    def is_trigger(self) -> bool:
        return self.data.node_type == "trigger" or self.kind in TRIGGER_TYPES


class AutomationEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = ""
    source: str
    target: str
    source_handle: str | None = Field(None, alias="sourceHandle")
    target_handle: str | None = Field(None, alias="targetHandle")


class AutomationGraph(BaseModel):
    nodes: list[AutomationNode] = Field(default_factory=list)
    edges: list[AutomationEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_node_ids(self) -> "AutomationGraph":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)
        return self

    @classmethod
    def from_automation(cls, automation: Any) -> "AutomationGraph":
        return cls.model_validate({"nodes": automation.nodes or [], "edges": automation.edges or []})

    def get_node(self, node_id: str) -> AutomationNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> list[AutomationEdge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def trigger_nodes(self, kind: str | None = None) -> list[AutomationNode]:
        return [n for n in self.nodes if n.is_trigger and (kind is None or n.kind == kind)]

