"""Stateless condition evaluation.

Compares one observed value against an alert's operator and threshold(s).
No I/O, no state; missing data never counts as a trigger.
"""

import math

from src.alerts.schemas import AlertDefinition, Operator

DEFAULT_EQUAL_TOLERANCE = 0.1


def _is_missing(value: float | None) -> bool:
    if value is None:
        return True
    try:
        return math.isnan(value)
    except TypeError:
        return True


def evaluate(
    value: float | None,
    operator: Operator | str,
    threshold: float,
    threshold2: float | None = None,
    tolerance: float = DEFAULT_EQUAL_TOLERANCE,
) -> bool:
    """Check whether ``value`` satisfies the condition.

    Operators:
        greater_than: ``value > threshold``
        less_than: ``value < threshold``
        equal_to: ``abs(value - threshold) <= tolerance``
        between: ``threshold <= value <= threshold2`` (inclusive)

    Args:
        value: Observed reading. None or NaN always yields False.
        operator: Operator enum member or its stored name.
        threshold: First threshold.
        threshold2: Upper bound for ``between``.
        tolerance: Absolute tolerance for ``equal_to``.

    Returns:
        True if the condition holds.

    Raises:
        InvalidAlertDefinitionError: If ``operator`` is not a known name.
    """
    op = Operator.parse(operator)

    if _is_missing(value):
        return False

    if op is Operator.GREATER_THAN:
        return value > threshold
    if op is Operator.LESS_THAN:
        return value < threshold
    if op is Operator.EQUAL_TO:
        # Tiny slack so a reading exactly at threshold +/- tolerance is not
        # lost to binary float representation.
        return abs(value - threshold) <= tolerance + 1e-9
    if op is Operator.BETWEEN:
        if _is_missing(threshold2):
            return False
        return threshold <= value <= threshold2
    return False


def evaluate_definition(
    definition: AlertDefinition,
    value: float | None,
    tolerance: float = DEFAULT_EQUAL_TOLERANCE,
) -> bool:
    """Evaluate ``value`` against a definition's operator and thresholds."""
    return evaluate(
        value,
        definition.operator,
        definition.threshold,
        definition.threshold2,
        tolerance=tolerance,
    )
