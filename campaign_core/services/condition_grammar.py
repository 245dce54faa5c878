"""Parser for survey item display conditions.

Conditions are short boolean sentences over earlier prompt responses, e.g.::

    q1 == 1 and (q2 > 5 or q2 == SKIPPED)

Grammar::

    sentence    := expression (conjunction expression)*
    expression  := id comparator value | "(" sentence ")"
    conjunction := "and" | "or"
    comparator  := "==" | "!=" | "<" | ">" | "<=" | ">="
    id          := [A-Za-z_][A-Za-z0-9_]*
    value       := "quoted string" | bare word without whitespace or parentheses

Parsing yields the referenced ids with the comparisons made against each of
them (checked against the referenced prompt at authoring time) and an
equivalent boolean expression evaluated against responses at runtime.
"""

import re
from typing import Dict, List, Tuple

from campaign_core.errors import ConditionParseError
from campaign_core.schemas.campaign import Condition, ConditionValuePair
from campaign_core.logging_config import get_logger

logger = get_logger(__name__)

COMPARATORS = ("==", "!=", "<", ">", "<=", ">=")
CONJUNCTIONS = ("and", "or")

# Prefix for response names inside rendered expressions; no Python keyword
# starts with it, so every prompt id yields a legal name.
NAME_PREFIX = "r_"

_ID = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_COMPARATOR = re.compile(r"==|!=|<=|>=|<|>")
_CONJUNCTION = re.compile(r"(and|or)(?=[\s(]|$)")
_QUOTED = re.compile(r'"((?:[^"\\]|\\.)*)"')
_BARE = re.compile(r"[^\s()]+")
_ESCAPE = re.compile(r"\\(.)")


def response_name(item_id: str) -> str:
    """Name under which a prompt's response is bound during evaluation."""
    return f"{NAME_PREFIX}{item_id}"


class ConditionParser:
    """Recursive-descent parser for a single condition string.

    A parser instance is single use: create one per condition.
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.references: Dict[str, List[ConditionValuePair]] = {}

    def parse(self) -> Tuple[Dict[str, List[ConditionValuePair]], str]:
        """Parse the whole condition.

        Returns:
            Tuple of (referenced id -> comparisons, rendered expression)

        Raises:
            ConditionParseError: If the condition is malformed
        """
        if not self.text.strip():
            raise ConditionParseError("Empty condition", self.text)

        expression = self._sentence(depth=0)
        self._skip_whitespace()
        if self.pos != len(self.text):
            if self.text[self.pos] == ")":
                raise ConditionParseError("Unbalanced ')'", self.text, self.pos)
            raise ConditionParseError("Expected 'and' or 'or'", self.text, self.pos)

        return self.references, expression

    def _sentence(self, depth: int) -> str:
        parts = [self._expression(depth)]

        while True:
            self._skip_whitespace()
            match = _CONJUNCTION.match(self.text, self.pos)
            if match is None:
                break
            self.pos = match.end()
            parts.append(match.group(1))
            parts.append(self._expression(depth))

        return " ".join(parts)

    def _expression(self, depth: int) -> str:
        self._skip_whitespace()
        if self.pos >= len(self.text):
            raise ConditionParseError("Unexpected end of condition", self.text, self.pos)

        if self.text[self.pos] == "(":
            self.pos += 1
            inner = self._sentence(depth + 1)
            self._skip_whitespace()
            if self.pos >= len(self.text) or self.text[self.pos] != ")":
                raise ConditionParseError("Missing ')'", self.text, self.pos)
            self.pos += 1
            return f"({inner})"

        item_id = self._identifier()
        comparator = self._comparator()
        value = self._value()

        self.references.setdefault(item_id, []).append(
            ConditionValuePair(comparator=comparator, value=value)
        )
        return f"({response_name(item_id)} {comparator} {value!r})"

    def _identifier(self) -> str:
        match = _ID.match(self.text, self.pos)
        if match is None:
            raise ConditionParseError("Expected a prompt id", self.text, self.pos)
        item_id = match.group(0)
        if item_id in CONJUNCTIONS:
            raise ConditionParseError(f"'{item_id}' cannot be used as a prompt id", self.text, self.pos)
        self.pos = match.end()
        return item_id

    def _comparator(self) -> str:
        self._skip_whitespace()
        match = _COMPARATOR.match(self.text, self.pos)
        if match is None:
            raise ConditionParseError("Expected a comparator", self.text, self.pos)
        self.pos = match.end()
        return match.group(0)

    def _value(self) -> str:
        self._skip_whitespace()
        if self.pos >= len(self.text):
            raise ConditionParseError("Missing value", self.text, self.pos)

        quoted = _QUOTED.match(self.text, self.pos)
        if quoted is not None:
            self.pos = quoted.end()
            return _ESCAPE.sub(r"\1", quoted.group(1))

        if self.text[self.pos] == '"':
            raise ConditionParseError("Unterminated quoted value", self.text, self.pos)

        match = _BARE.match(self.text, self.pos)
        if match is None:
            raise ConditionParseError("Missing value", self.text, self.pos)
        self.pos = match.end()
        return match.group(0)

    def _skip_whitespace(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1


def parse_condition(text: str) -> Dict[str, List[ConditionValuePair]]:
    """Parse a condition into its referenced ids and comparisons.

    Args:
        text: Raw condition string

    Returns:
        Ordered mapping of referenced prompt id -> list of comparisons

    Raises:
        ConditionParseError: If the condition is malformed

    Example:
        >>> parse_condition("q1 > 5 and q1 != SKIPPED")
        {'q1': [ConditionValuePair(comparator='>', value='5'),
                ConditionValuePair(comparator='!=', value='SKIPPED')]}
    """
    references, _ = ConditionParser(text).parse()
    return references


def compile_condition(text: str) -> Condition:
    """Parse a condition and build its compiled form.

    Raises:
        ConditionParseError: If the condition is malformed
    """
    references, expression = ConditionParser(text).parse()
    logger.debug(f"Compiled condition '{text}' -> {expression}")
    return Condition(
        text=text,
        expression=expression,
        references={key: tuple(pairs) for key, pairs in references.items()},
    )
