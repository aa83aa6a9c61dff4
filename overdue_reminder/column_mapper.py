"""Header auto-mapping for uploaded AR exports.

Exports from different accounting packages name the same column in
different ways ("Customer", "Account Name", "Trading Name", ...).  The
mapper proposes a :class:`FieldMap` from the header row; the operator can
override any entry afterwards with :meth:`FieldMap.with_overrides`.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from .config import ColumnAliases
from .models import FieldMap

logger = logging.getLogger(__name__)

DEFAULT_ALIASES: dict[str, list[str]] = ColumnAliases().as_dict()


def auto_map(
    headers: Iterable[str],
    aliases: Optional[Mapping[str, list[str]]] = None,
) -> FieldMap:
    """Guess which header holds each canonical field.

    Per field, in order:
      1. exact case-insensitive match, aliases tried in list order;
      2. substring match -- first alias contained in any header;
      3. unmapped (``""``).

    Args:
        headers: Header strings in file order.
        aliases: Optional replacement alias lists keyed by field name.
            Missing keys fall back to the defaults.

    Returns:
        A FieldMap naming the original (un-lowercased) header strings.
    """
    header_list = [str(h) for h in headers if h is not None]
    lowered = [h.strip().lower() for h in header_list]
    alias_table = dict(DEFAULT_ALIASES)
    if aliases:
        alias_table.update({k: list(v) for k, v in aliases.items()})

    picks: dict[str, str] = {}
    for field_name in FieldMap.field_names():
        picks[field_name] = _pick(
            [a.lower() for a in alias_table.get(field_name, [])],
            header_list,
            lowered,
        )

    field_map = FieldMap(**picks)
    if field_map.unmapped_fields:
        logger.debug("Unmapped fields: %s", field_map.unmapped_fields)
    logger.debug("Header map: %s", field_map.to_dict())
    return field_map


def _pick(aliases: list[str], headers: list[str], lowered: list[str]) -> str:
    for alias in aliases:
        if alias in lowered:
            return headers[lowered.index(alias)]

    for alias in aliases:
        for idx, header_text in enumerate(lowered):
            if alias in header_text:
                return headers[idx]

    return ""
