import json
from typing import Any, Dict, Optional

import requests

from core.config import get_settings
from core.errors import ActionError, OutboundWebhookError
from core.logging import get_logger, log_extra
from services.automation.types import ActionContext, ActionResult
from services.automation.variables import resolve_json_placeholders, resolve_variables

logger = get_logger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")
MAX_ERROR_BODY = 500


def _build_headers(raw: Any, variables: Dict[str, Any]) -> Dict[str, str]:
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            parsed = json.loads(resolve_json_placeholders(raw, variables))
        except json.JSONDecodeError as exc:
            raise ActionError(f"Webhook headers are not valid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ActionError("Webhook headers must be a JSON object")
        return {str(k): "" if v is None else str(v) for k, v in parsed.items()}
    return {item.key: resolve_variables(item.value, variables) for item in raw if item.key}


def _build_body(config: Any, variables: Dict[str, Any], headers: Dict[str, str]) -> Optional[Any]:
    if config.content_type == "form_urlencoded":
        headers.setdefault("Content-Type", "application/x-www-form-urlencoded")
        return {p.key: resolve_variables(p.value, variables) for p in config.body_params if p.key}

    headers.setdefault("Content-Type", "application/json")
    if config.body:
        body = resolve_json_placeholders(config.body, variables)
        try:
            json.loads(body)
        except json.JSONDecodeError as exc:
            raise ActionError(f"Webhook body is not valid JSON after substitution: {exc}") from exc
        return body
    if config.body_params:
        return json.dumps({p.key: resolve_variables(p.value, variables) for p in config.body_params if p.key})
    return None


def send_webhook(ctx: ActionContext) -> ActionResult:
    config = ctx.config
    if not config.url:
        raise ActionError("Webhook URL is not configured")
    variables = ctx.variables
    url = resolve_variables(config.url, variables)
    method = config.method
    headers = _build_headers(config.headers, variables)
    data = _build_body(config, variables, headers) if method in BODY_METHODS else None

    try:
        response = requests.request(
            method,
            url,
            headers=headers,
            data=data,
            timeout=get_settings().automation_default_timeout_seconds,
        )
    except requests.RequestException as exc:
        raise OutboundWebhookError(f"Webhook to {url} failed: {exc}") from exc

    if not 200 <= response.status_code < 300:
        logger.warning(
            "Outbound webhook rejected",
            **log_extra(ctx.profile.id, node_id=ctx.node.id, url=url, status_code=response.status_code),
        )
        raise OutboundWebhookError(
            f"Webhook to {url} failed with status {response.status_code}: {response.text[:MAX_ERROR_BODY]}"
        )
    return ActionResult(details=f"Webhook sent to {url}. Response: {response.status_code}")
