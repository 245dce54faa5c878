"""Condition evaluation using simpleeval for safe expression evaluation.

This module decides whether a survey item should have been displayed, given
the responses already checked earlier in the same survey. Conditions are
compiled to boolean expressions by the condition grammar and evaluated here
with type-aware comparison operators.
"""

import ast
import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from simpleeval import SimpleEval, InvalidExpression, NameNotDefined

from campaign_core.errors import ConfigurationError
from campaign_core.schemas.campaign import Condition, NoResponse
from campaign_core.logging_config import get_logger
from campaign_core.services.condition_grammar import response_name
from campaign_core.services.prompt_type_validators import TIMESTAMP_FORMAT

logger = get_logger(__name__)


def _as_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def _as_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), TIMESTAMP_FORMAT)
        except ValueError:
            return None
    return None


def _scalar_equals(response: Any, literal: str) -> bool:
    if isinstance(response, datetime):
        return response == _as_timestamp(literal)

    number = _as_decimal(response)
    if number is not None:
        other = _as_decimal(literal)
        return other is not None and number == other

    return str(response) == literal


def _equals(response: Any, literal: str) -> bool:
    """Equality between a checked response and a condition literal.

    Sentinels only equal their own name. A list response (multi choice)
    equals a literal it contains, or a JSON array literal equal to it.
    """
    sentinel = NoResponse.parse(literal)
    if sentinel is not None:
        return NoResponse.parse(response) is sentinel
    if NoResponse.parse(response) is not None:
        return False

    if isinstance(response, list):
        try:
            parsed = json.loads(literal)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return response == parsed
        return any(_scalar_equals(element, literal) for element in response)

    return _scalar_equals(response, literal)


def _not_equals(response: Any, literal: str) -> bool:
    return not _equals(response, literal)


def _ordering(response: Any, literal: str) -> Optional[int]:
    """Compare response to literal: -1, 0, 1, or None if not comparable."""
    if NoResponse.parse(response) is not None or NoResponse.parse(literal) is not None:
        return None

    if isinstance(response, datetime):
        other = _as_timestamp(literal)
        if other is None:
            return None
        return (response > other) - (response < other)

    number = _as_decimal(response)
    other_number = _as_decimal(literal)
    if number is None or other_number is None:
        return None
    return (number > other_number) - (number < other_number)


def _less_than(response: Any, literal: str) -> bool:
    result = _ordering(response, literal)
    return result is not None and result < 0


def _less_than_equals(response: Any, literal: str) -> bool:
    result = _ordering(response, literal)
    return result is not None and result <= 0


def _greater_than(response: Any, literal: str) -> bool:
    result = _ordering(response, literal)
    return result is not None and result > 0


def _greater_than_equals(response: Any, literal: str) -> bool:
    result = _ordering(response, literal)
    return result is not None and result >= 0


CONDITION_OPERATORS = {
    ast.Eq: _equals,
    ast.NotEq: _not_equals,
    ast.Lt: _less_than,
    ast.LtE: _less_than_equals,
    ast.Gt: _greater_than,
    ast.GtE: _greater_than_equals,
}


class ConditionEvaluator:
    """Service for evaluating display conditions against checked responses."""

    @staticmethod
    def evaluate(condition: Condition, responses: Mapping[str, Any]) -> bool:
        """Evaluate a compiled condition safely.

        A referenced prompt with no checked response counts as not displayed.

        Args:
            condition: Compiled condition
            responses: Responses checked so far, keyed by prompt id

        Returns:
            Whether the conditioned item should have been displayed

        Raises:
            ConfigurationError: If the compiled expression cannot be evaluated

        Example:
            >>> ConditionEvaluator.evaluate(compile_condition("q1 > 5"), {"q1": 7})
            True
        """
        names = {
            response_name(item_id): responses.get(item_id, NoResponse.NOT_DISPLAYED)
            for item_id in condition.references
        }
        evaluator = SimpleEval(operators=CONDITION_OPERATORS, functions={}, names=names)

        try:
            result = evaluator.eval(condition.expression)
        except (InvalidExpression, NameNotDefined, SyntaxError) as e:
            logger.error(f"Invalid compiled condition '{condition.text}': {e}")
            raise ConfigurationError(f"Condition could not be evaluated: {condition.text}") from e

        logger.debug(f"Evaluated condition '{condition.text}' = {result}")
        return bool(result)
