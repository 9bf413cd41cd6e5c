import re
from typing import Any, Optional, Sequence

_SEPARATORS = re.compile(r"[_\s\-]+")
_NON_WORD = re.compile(r"[^\w]")


def normalize_key(name: Any) -> str:
    """Lowercase and drop separators and punctuation: "Valor_Venda (R$)" -> "valorvendar"."""
    text = "" if name is None else str(name)
    return _NON_WORD.sub("", _SEPARATORS.sub("", text.lower()))


def fuzzy_match_column(suggested: Any, columns: Sequence[str]) -> Optional[str]:
    """
    Resolve a column name suggested by the AI against the real column names.

    Tries, in order: exact match, case-insensitive match, normalized match
    and substring containment in either direction. A list suggestion is
    resolved through its first element. Returns None when nothing matches.
    """
    if isinstance(suggested, (list, tuple)):
        suggested = suggested[0] if suggested else None
    if suggested is None:
        return None
    suggested = str(suggested).strip()
    if not suggested:
        return None

    if suggested in columns:
        return suggested

    lowered = suggested.lower()
    for column in columns:
        if column.lower() == lowered:
            return column

    target = normalize_key(suggested)
    if target:
        for column in columns:
            if normalize_key(column) == target:
                return column

    for column in columns:
        candidate = column.lower()
        if not candidate:
            continue
        if lowered in candidate or candidate in lowered:
            return column

    return None
