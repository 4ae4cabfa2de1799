"""CONDITION node: pick a branch with deterministic operators."""

import logging
from typing import Any, Callable, Dict, List

from common.errors import ConfigurationError
from workflow.executors.templating import resolve_path
from workflow.models import SELECTED_BRANCH_KEY, WorkflowContext
from workflow.registry import NodeExecutionParams

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict)):
        return len(value.strip() if isinstance(value, str) else value) == 0
    return False


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected).lower() in actual.lower()
    if isinstance(actual, (list, dict)):
        return expected in actual
    return False


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def _check(actual: Any, expected: Any) -> bool:
        try:
            return op(float(actual), float(expected))
        except (TypeError, ValueError):
            return False

    return _check


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda actual, expected: actual == expected,
    "ne": lambda actual, expected: actual != expected,
    "gt": _compare(lambda a, b: a > b),
    "gte": _compare(lambda a, b: a >= b),
    "lt": _compare(lambda a, b: a < b),
    "lte": _compare(lambda a, b: a <= b),
    "contains": _contains,
    "is_empty": lambda actual, _expected: _is_empty(actual),
    "is_not_empty": lambda actual, _expected: not _is_empty(actual),
    "default": lambda _actual, _expected: True,
}


def evaluate_condition(condition: Dict[str, Any], context: WorkflowContext) -> bool:
    """Evaluate one ``{"field", "operator", "value"}`` branch condition."""
    operator = condition.get("operator", "eq")
    check = OPERATORS.get(operator)
    if check is None:
        raise ConfigurationError(
            f"Unknown condition operator '{operator}'",
            details={"operator": operator, "supported": sorted(OPERATORS)},
        )
    actual = resolve_path(context, condition["field"]) if condition.get("field") else None
    return check(actual, condition.get("value"))


async def condition_executor(params: NodeExecutionParams) -> WorkflowContext:
    """Select the first matching branch, falling back to the last one.

    ``data["conditions"]`` is an ordered list of branches; each ``id`` matches the
    ``source_handle`` of an outgoing edge.
    """
    conditions: List[Dict[str, Any]] = params.data.get("conditions") or []
    context = dict(params.context)
    if not conditions:
        context[SELECTED_BRANCH_KEY] = DEFAULT_BRANCH
        return context

    for condition in conditions:
        if not condition.get("id"):
            raise ConfigurationError(f"Condition node {params.node_id} has a branch without an id")

    selected = conditions[-1]["id"]
    for condition in conditions:
        if evaluate_condition(condition, context):
            selected = condition["id"]
            break

    logger.debug("Condition node %s selected branch %s", params.node_id, selected)
    context[SELECTED_BRANCH_KEY] = selected
    return context
