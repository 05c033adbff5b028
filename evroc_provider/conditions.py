"""Condition bookkeeping on object status.

Every object handled here exposes ``status.conditions``. Conditions are kept as an
ordered set: at most one entry per type, ``Ready`` first and the rest alphabetical.
"""

from datetime import datetime, timezone

from evroc_provider.models.condition import READY, SEVERITY_NONE, Condition


def _sort_key(condition: Condition) -> tuple[int, str]:
    return (0 if condition.type == READY else 1, condition.type)


def get(obj, condition_type: str) -> Condition | None:
    """Return the condition of the given type, or None."""
    for condition in obj.status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_condition(obj, condition: Condition) -> None:
    """Insert or replace a condition, keeping the set ordered.

    The transition time is only bumped when the status actually flips.
    """
    existing = get(obj, condition.type)
    if existing is not None and existing.status == condition.status:
        condition.last_transition_time = existing.last_transition_time
    if condition.last_transition_time is None:
        condition.last_transition_time = datetime.now(timezone.utc).replace(microsecond=0)

    conditions = [c for c in obj.status.conditions if c.type != condition.type]
    conditions.append(condition)
    obj.status.conditions = sorted(conditions, key=_sort_key)


def mark_true(obj, condition_type: str) -> None:
    set_condition(obj, Condition(type=condition_type, status="True"))


def mark_false(obj, condition_type: str, reason: str, severity: str, message: str, *args) -> None:
    """Set a condition to False with a reason.

    Args:
        obj: Object whose status carries the conditions
        condition_type: Condition type, e.g. ``NetworkReady``
        reason: CamelCase reason
        severity: One of Error, Warning, Info
        message: Human readable message, %-formatted with ``args`` when given
    """
    if args:
        message = message % args
    set_condition(
        obj,
        Condition(
            type=condition_type,
            status="False",
            reason=reason,
            severity=severity or SEVERITY_NONE,
            message=message,
        ),
    )


def is_true(obj, condition_type: str) -> bool:
    condition = get(obj, condition_type)
    return condition is not None and condition.status == "True"


def is_false(obj, condition_type: str) -> bool:
    condition = get(obj, condition_type)
    return condition is not None and condition.status == "False"


def delete(obj, condition_type: str) -> None:
    obj.status.conditions = [c for c in obj.status.conditions if c.type != condition_type]
