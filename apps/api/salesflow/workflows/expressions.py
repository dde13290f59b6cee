"""Condition evaluation and template rendering over trigger data.

Paths are dot-separated keys into nested dicts (numeric segments also index
lists). A path that cannot be followed resolves to ``None``.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any


_TEMPLATE_RE = re.compile(r"\{\{([\w.]+)\}\}")
_MISSING = object()
logger = logging.getLogger("salesflow.workflows")


def resolve_path(data: Any, path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else _MISSING
        else:
            return None
        if current is _MISSING:
            return None
    return current


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_number(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return 0.0
        try:
            number = float(stripped)
        except ValueError:
            return None
        return None if math.isnan(number) else number
    return None


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right) and not (left is None or right is None):
        return False
    return left == right


def _equals(current: Any, target: Any) -> bool:
    return _strict_equals(current, target)


def _not_equals(current: Any, target: Any) -> bool:
    return not _strict_equals(current, target)


def _contains(current: Any, target: Any) -> bool:
    return _to_text(target) in _to_text(current)


def _greater_than(current: Any, target: Any) -> bool:
    left, right = _to_number(current), _to_number(target)
    return left is not None and right is not None and left > right


def _less_than(current: Any, target: Any) -> bool:
    left, right = _to_number(current), _to_number(target)
    return left is not None and right is not None and left < right


def _exists(current: Any, target: Any) -> bool:
    return current is not None


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": _not_equals,
    "contains": _contains,
    "greater_than": _greater_than,
    "less_than": _less_than,
    "exists": _exists,
}


def evaluate_condition(field: str, operator: str, value: Any, data: Any) -> bool:
    """Unknown operators evaluate to False."""
    handler = OPERATORS.get(operator)
    if handler is None:
        logger.warning("workflow.unknown_operator", extra={"field": field, "operator": operator})
        return False
    return handler(resolve_path(data, field), value)


def evaluate_conditions(conditions: Iterable[Any], data: Any) -> bool:
    """AND across all conditions; an empty list passes.

    Accepts condition models (``field``/``operator``/``value`` attributes) or
    plain mappings with the same keys.
    """
    for condition in conditions:
        if isinstance(condition, Mapping):
            field = str(condition.get("field", ""))
            operator = str(condition.get("operator", ""))
            value = condition.get("value")
        else:
            field, operator, value = condition.field, condition.operator, condition.value
        if not evaluate_condition(field, operator, value, data):
            return False
    return True


def render_template(template: str | None, data: Any) -> str:
    """Replace ``{{dot.path}}`` tokens; unresolved tokens are left verbatim."""
    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        value = resolve_path(data, match.group(1))
        if value is None:
            return match.group(0)
        return _to_text(value)

    return _TEMPLATE_RE.sub(_replace, template)
