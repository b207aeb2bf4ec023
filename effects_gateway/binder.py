"""
Parameter binding for node templates.

Resolves a caller-supplied node template, the file tokens of the uploaded
images and the submitted form fields into the node list sent to the remote
API. Binding never raises: every gap degrades to a logged default, and every
bound value is a string because the remote API rejects anything else.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .errors import ValidationError
from .models import FieldKind, FileToken, NodeBinding, NodeTemplateEntry

logger = logging.getLogger(__name__)

NUMERIC_FIELDS = frozenset({"scale", "X_offset", "Y_offset", "rotation"})
TAG_FIELD_DEFAULTS = {"shape": "triangle"}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_node_template(raw: Any) -> List[NodeTemplateEntry]:
    """
    Parse a node template from a JSON string or an already-decoded list.

    Args:
        raw: JSON text or list of ``{nodeId, fieldName, paramKey?, fieldValue?}``

    Returns:
        Template entries in their original order

    Raises:
        ValidationError: Not a list, or an entry lacks nodeId/fieldName
    """
    if raw is None:
        raise ValidationError("nodeInfoList is required")
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ValidationError(f"nodeInfoList is not valid JSON: {e}") from e
    if not isinstance(raw, list):
        raise ValidationError("nodeInfoList must be an array")

    entries = []
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise ValidationError(f"nodeInfoList[{index}] must be an object")
        node_id = item.get("nodeId")
        field_name = item.get("fieldName")
        if node_id in (None, "") or not field_name:
            raise ValidationError(f"nodeInfoList[{index}] requires nodeId and fieldName")
        param_key = item.get("paramKey")
        entries.append(
            NodeTemplateEntry(
                node_id=str(node_id),
                field_name=str(field_name),
                param_key=str(param_key) if param_key not in (None, "") else None,
                field_value=item.get("fieldValue"),
            )
        )
    return entries


def stringify(value: Any) -> str:
    """Render a form value the way the remote API expects it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_select(value: Any) -> Optional[int]:
    """Integer prefix of a select value, truncating toward zero ("3.7" -> 3)."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def _template_value(entry: NodeTemplateEntry) -> str:
    return stringify(entry.field_value)


def _lookup(form_fields: Mapping[str, Any], key: Optional[str]) -> Any:
    if not key or key not in form_fields:
        return None
    value = form_fields[key]
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return value


def other_field_default(field_name: str) -> str:
    if field_name in NUMERIC_FIELDS:
        return "0"
    return TAG_FIELD_DEFAULTS.get(field_name, "")


def bind(
    template: Sequence[NodeTemplateEntry],
    file_tokens: Iterable[FileToken],
    form_fields: Mapping[str, Any],
) -> List[NodeBinding]:
    """
    Resolve every template entry into a string-valued node binding.

    Args:
        template: Parsed node template
        file_tokens: Tokens of the uploaded images, in arrival order
        form_fields: Submitted form fields

    Returns:
        One binding per template entry, in template order
    """
    tokens = list(file_tokens)
    image_index = 0
    bindings: List[NodeBinding] = []

    for position, entry in enumerate(template):
        kind = entry.kind

        if kind is FieldKind.IMAGE:
            if image_index < len(tokens):
                bindings.append(_binding(entry, stringify(tokens[image_index])))
                image_index += 1
            else:
                logger.warning(
                    f"Image node {entry.node_id} (position {position}) has no uploaded file "
                    f"({len(tokens)} uploaded), leaving default"
                )
                bindings.append(_binding(entry, _template_value(entry), missing=True))

        elif kind is FieldKind.TEXT:
            value = _lookup(form_fields, entry.param_key)
            key = entry.param_key
            if value is None:
                key = f"prompt_{entry.node_id}"
                value = _lookup(form_fields, key)
            if value is None:
                logger.warning(
                    f"Text node {entry.node_id} has no value for '{entry.param_key}' or "
                    f"'prompt_{entry.node_id}', keeping template value"
                )
                bindings.append(_binding(entry, _template_value(entry), missing=True))
            else:
                logger.debug(f"Text node {entry.node_id} bound from '{key}'")
                bindings.append(_binding(entry, stringify(value)))

        elif kind is FieldKind.SELECT:
            raw = _lookup(form_fields, entry.param_key)
            parsed = parse_select(raw) if raw is not None else None
            if parsed is None:
                logger.warning(
                    f"Select node {entry.node_id} has no integer value for "
                    f"'{entry.param_key}' (got {raw!r}), keeping template value"
                )
                bindings.append(_binding(entry, _template_value(entry), missing=True))
            else:
                bindings.append(_binding(entry, str(parsed)))

        else:
            value = _lookup(form_fields, entry.param_key)
            if value is None:
                default = other_field_default(entry.field_name)
                logger.warning(
                    f"Node {entry.node_id} field '{entry.field_name}' has no value for "
                    f"'{entry.param_key}', using default {default!r}"
                )
                bindings.append(_binding(entry, default, missing=True))
            else:
                bindings.append(_binding(entry, stringify(value)))

    if image_index < len(tokens):
        logger.warning(f"{len(tokens) - image_index} uploaded file(s) not referenced by any image node")

    return bindings


def _binding(entry: NodeTemplateEntry, value: str, missing: bool = False) -> NodeBinding:
    return NodeBinding(
        node_id=entry.node_id,
        field_name=entry.field_name,
        param_key=entry.param_key,
        field_value=value,
        missing=missing,
    )
