import random
from typing import Any

from services.automation.types import ActionContext, ActionResult
from services.automation.variables import get_value_from_path, resolve_variables


def _lower(value: Any) -> str:
    return "" if value is None else str(value).lower()


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return str(value).strip() == ""


def evaluate(operator: str, source: Any, expected: str) -> bool:
    expected = expected.lower()
    if operator == "is_empty":
        return _is_empty(source)
    if operator == "is_not_empty":
        return not _is_empty(source)
    if operator in ("contains", "not_contains"):
        if isinstance(source, (list, tuple)):
            found = expected in [_lower(item) for item in source]
        else:
            found = expected in _lower(source)
        return found if operator == "contains" else not found
    if operator == "equals":
        return _lower(source) == expected
    if operator == "not_equals":
        return _lower(source) != expected
    if operator == "starts_with":
        return _lower(source).startswith(expected)
    return False


def condition(ctx: ActionContext) -> ActionResult:
    config = ctx.config
    variables = ctx.variables
    source = get_value_from_path(variables, config.field)
    expected = resolve_variables(config.value, variables)
    met = evaluate(config.operator, source, expected)
    return ActionResult(
        details=f"Condition '{config.field}' {config.operator} '{expected}': {'yes' if met else 'no'}",
        next_node_handle="true" if met else "false",
    )


def split_path(ctx: ActionContext) -> ActionResult:
    config = ctx.config
    branch = random.choices(config.branches, weights=config.weights, k=1)[0]
    return ActionResult(details=f"Split path took branch {branch.upper()}", next_node_handle=branch)
