"""Single-select option resolution for Bitable fields.

Bitable rejects a single-select value that does not name one of the
column's options. Submissions carry free-text labels, so each value is
resolved to an option id through these tiers, first hit wins:

1. The value already is an option id of this column.
2. Exact label match.
3. Exact match after stripping whitespace and zero-width characters from
   both sides. Two labels normalizing to the same text is ambiguous and
   falls through.
4. The value is a substring of exactly one label.

Anything else resolves to None. Ambiguous matches are never guessed;
several "其他" options coexist in the catalogs.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SINGLE_SELECT_TYPE = 3
SINGLE_SELECT_UI_TYPE = "SingleSelect"
OPTION_ID_PREFIX = "opt"

_INVISIBLE_RE = re.compile("[\\s\\u200b-\\u200d\\ufeff]")


@dataclass(frozen=True)
class FieldMeta:
    """Schema of one Bitable column; option catalogs for single-selects."""

    name: str
    type: Any
    ui_type: str
    options_by_name: Mapping[str, str] = field(default_factory=dict)
    options_by_id: frozenset[str] = frozenset()


def normalize_select_option_text(value: Any) -> str:
    """Trim and strip all whitespace and zero-width characters."""
    return _INVISIBLE_RE.sub("", str(value or "").strip())


def is_single_select(meta: FieldMeta) -> bool:
    return meta.ui_type == SINGLE_SELECT_UI_TYPE or meta.type == SINGLE_SELECT_TYPE


def resolve_single_select_option_id(meta: FieldMeta, raw_value: Any) -> str | None:
    """Map a submitted label to an option id of ``meta``, or None."""
    if not is_single_select(meta):
        return None

    value = str(raw_value or "").strip()
    if not value:
        return None

    if value.startswith(OPTION_ID_PREFIX) and value in meta.options_by_id:
        return value

    exact = meta.options_by_name.get(value)
    if exact:
        return exact

    normalized = normalize_select_option_text(value)
    if normalized:
        normalized_matches: list[str] = []
        for name, option_id in meta.options_by_name.items():
            if normalize_select_option_text(name) == normalized:
                normalized_matches.append(option_id)
                if len(normalized_matches) > 1:
                    break
        if len(normalized_matches) == 1:
            return normalized_matches[0]

    matches: list[str] = []
    for name, option_id in meta.options_by_name.items():
        if value in name:
            matches.append(option_id)
            if len(matches) > 1:
                break

    return matches[0] if len(matches) == 1 else None


def apply_single_select_mappings(
    fields: Mapping[str, Any],
    meta_by_name: Mapping[str, FieldMeta],
    *,
    trace_id: str,
    id_suffix: str,
) -> dict[str, Any]:
    """Resolve every single-select value in ``fields`` to its option id.

    Fields that are not known single-select columns, or whose value is not
    a non-empty string, pass through unchanged. A single-select value that
    cannot be resolved is dropped from the result and a warning is logged;
    sending it would fail the whole record create.

    Returns:
        A new dict; ``fields`` is not modified.
    """
    result: dict[str, Any] = {}

    for field_name, value in fields.items():
        meta = meta_by_name.get(field_name)
        if not isinstance(value, str) or not value or meta is None or not is_single_select(meta):
            result[field_name] = value
            continue

        option_id = resolve_single_select_option_id(meta, value)
        if option_id is None:
            logger.warning(
                "bitable.select_option_missing",
                trace_id=trace_id,
                id_suffix=id_suffix,
                field_name=field_name,
                value=value[:128],
            )
            continue

        result[field_name] = option_id

    return result


def parse_field_meta(items: Iterable[Mapping[str, Any]]) -> dict[str, FieldMeta]:
    """Build ``{field name: FieldMeta}`` from a Bitable field listing.

    Accepts both the API's snake_case keys (``field_name``, ``ui_type``,
    ``property.options``) and the flattened form (``name``, ``uiType``,
    ``options``).
    """
    metas: dict[str, FieldMeta] = {}

    for item in items:
        name = str(item.get("field_name") or item.get("name") or "").strip()
        if not name:
            continue

        prop = item.get("property") or {}
        raw_options = prop.get("options") if isinstance(prop, Mapping) else None
        if raw_options is None:
            raw_options = item.get("options") or []

        options_by_name: dict[str, str] = {}
        for option in raw_options:
            option_name = str(option.get("name") or "")
            option_id = str(option.get("id") or "")
            if option_name and option_id and option_name not in options_by_name:
                options_by_name[option_name] = option_id

        metas[name] = FieldMeta(
            name=name,
            type=item.get("type"),
            ui_type=str(item.get("ui_type") or item.get("uiType") or ""),
            options_by_name=options_by_name,
            options_by_id=frozenset(options_by_name.values()),
        )

    return metas
