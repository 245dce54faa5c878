"""Accessors for raw campaign document nodes.

A loaded campaign document is plain YAML data: nested dicts and lists. These
helpers read it the way the validators and the schema builder expect, with
scalar values compared as trimmed strings.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple

PROMPT = "prompt"
MESSAGE = "message"
REPEATABLE_SET = "repeatableSet"

CONTENT_KINDS = (PROMPT, MESSAGE, REPEATABLE_SET)


def scalar_text(value: Any) -> Optional[str]:
    """Render a scalar document value as trimmed text.

    Booleans render as ``true``/``false`` so YAML booleans read the same as
    their quoted spelling.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def text(node: Dict[str, Any], field: str) -> Optional[str]:
    """Return the trimmed text of ``field`` or None if it is absent."""
    return scalar_text(node.get(field))


def flag(node: Dict[str, Any], field: str) -> bool:
    """Return ``field`` as a boolean; absent or anything but true is False."""
    value = node.get(field)
    if isinstance(value, bool):
        return value
    return scalar_text(value) is not None and scalar_text(value).lower() == "true"


def item_id(node: Dict[str, Any]) -> str:
    return text(node, "id") or ""


def properties(prompt_node: Dict[str, Any]) -> List[Dict[str, Optional[str]]]:
    """Return a prompt's property list as key/label/value text entries."""
    return [
        {
            "key": text(prop, "key"),
            "label": text(prop, "label"),
            "value": text(prop, "value"),
        }
        for prop in prompt_node.get("properties") or []
    ]


def content_items(container: Dict[str, Any], field: str = "contentList") -> Iterator[Tuple[str, Dict[str, Any]]]:
    """Yield (kind, node) for each entry of a content or prompt list."""
    for entry in container.get(field) or []:
        for kind in CONTENT_KINDS:
            if kind in entry:
                yield kind, entry[kind]
                break


def repeatable_set_prompts(set_node: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for kind, node in content_items(set_node, "prompts"):
        if kind == PROMPT:
            yield node


def surveys(document: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(document.get("surveys") or [])


def iter_prompts(document: Dict[str, Any]) -> Iterator[Tuple[Dict[str, Any], Optional[Dict[str, Any]], Dict[str, Any]]]:
    """Yield (survey, enclosing repeatable set or None, prompt) in document order."""
    for survey in surveys(document):
        for kind, node in content_items(survey):
            if kind == PROMPT:
                yield survey, None, node
            elif kind == REPEATABLE_SET:
                for prompt in repeatable_set_prompts(node):
                    yield survey, node, prompt


def iter_repeatable_sets(document: Dict[str, Any]) -> Iterator[Tuple[Dict[str, Any], Dict[str, Any]]]:
    for survey in surveys(document):
        for kind, node in content_items(survey):
            if kind == REPEATABLE_SET:
                yield survey, node


def iter_ids(document: Dict[str, Any]) -> Iterator[str]:
    """Yield every id in the document: surveys, items and nested prompts."""
    for survey in surveys(document):
        yield item_id(survey)
        for kind, node in content_items(survey):
            yield item_id(node)
            if kind == REPEATABLE_SET:
                for prompt in repeatable_set_prompts(node):
                    yield item_id(prompt)
