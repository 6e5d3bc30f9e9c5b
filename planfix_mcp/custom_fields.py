"""
Planfix custom fields: the registry loaded from config, validation of the
extra tool arguments it allows, and the equality filters built from them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

logger = logging.getLogger("planfix_mcp.custom_fields")

# Planfix filter type for "custom field equals" per entity kind.
CUSTOM_FIELD_FILTER_TYPES: Dict[str, int] = {
    "contact": 4101,
    "task": 116,
}

CustomFieldArgs = Union[Mapping[str, Any], Sequence[Tuple[str, Any]]]


@dataclass(frozen=True)
class CustomFieldConfig:
    id: int
    name: str
    arg_name: str
    type: str = "string"


def parse_custom_fields(raw: Optional[Iterable[Mapping[str, Any]]]) -> List[CustomFieldConfig]:
    fields: List[CustomFieldConfig] = []
    for item in raw or []:
        if not isinstance(item, Mapping):
            raise ValueError(f"Custom field entry must be a mapping, got {item!r}")
        if "id" not in item:
            raise ValueError(f"Custom field entry is missing 'id': {item!r}")
        name = str(item.get("name") or "")
        arg_name = str(item.get("arg_name") or item.get("argName") or name)
        if not arg_name:
            raise ValueError(f"Custom field {item['id']} needs a name or arg_name")
        fields.append(
            CustomFieldConfig(
                id=int(item["id"]),
                name=name,
                arg_name=arg_name,
                type=str(item.get("type", "string")).lower(),
            )
        )
    return fields


def _as_pairs(args: CustomFieldArgs) -> List[Tuple[str, Any]]:
    if isinstance(args, Mapping):
        return list(args.items())
    return list(args)


def validate_custom_field_args(
    args: Optional[CustomFieldArgs],
    fields: Sequence[CustomFieldConfig],
) -> List[Tuple[str, Any]]:
    """Keep the (arg_name, value) pairs the registry knows, in registry order."""
    if not args:
        return []
    given = dict(_as_pairs(args))
    known = {f.arg_name for f in fields}
    for key in given:
        if key not in known:
            logger.debug(f"Ignoring unknown custom field argument {key!r}")
    return [(f.arg_name, given[f.arg_name]) for f in fields if f.arg_name in given]


def _coerce(value: Any, field_cfg: CustomFieldConfig) -> Any:
    if field_cfg.type == "number":
        if isinstance(value, bool):
            raise ValueError("boolean is not a number")
        if isinstance(value, (int, float)):
            return value
        text = str(value).strip()
        try:
            return int(text)
        except ValueError:
            return float(text)
    if field_cfg.type == "boolean":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in {"true", "1", "yes"}:
            return True
        if text in {"false", "0", "no"}:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return value


def extend_filters_with_custom_fields(
    filters: List[Dict[str, Any]],
    args: Optional[CustomFieldArgs],
    fields: Sequence[CustomFieldConfig],
    entity: str,
) -> List[Dict[str, Any]]:
    """
    Append one equality filter per configured custom field present in ``args``.

    ``filters`` is extended in place and also returned. Empty values are
    ignored; values that do not fit the field type are skipped with a warning.
    """
    filter_type = CUSTOM_FIELD_FILTER_TYPES.get(entity)
    if filter_type is None:
        raise ValueError(f"Unknown entity kind {entity!r}")
    if not args:
        return filters

    given = dict(_as_pairs(args))
    for field_cfg in fields:
        value = given.get(field_cfg.arg_name)
        if value is None or value == "":
            continue
        try:
            value = _coerce(value, field_cfg)
        except ValueError as exc:
            logger.warning(f"Skipping custom field {field_cfg.arg_name!r} ({field_cfg.id}): {exc}")
            continue
        filters.append(
            {
                "type": filter_type,
                "field": field_cfg.id,
                "operator": "equal",
                "value": value,
            }
        )
    return filters
