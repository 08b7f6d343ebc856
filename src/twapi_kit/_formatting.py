from __future__ import annotations

"""Query-string encoders, one per API generation.

Helix wants array parameters repeated (``id=1&id=2``), Kraken wants them
comma-joined (``id=1,2``).  Both are plain functions so a
:class:`~twapi_kit._pipeline.FamilyConfig` can carry whichever it needs.
"""

from typing import Any, Callable, Iterable, Mapping
from urllib.parse import urlencode

__all__ = ["Formatter", "repeat_formatter", "join_formatter"]

Formatter = Callable[[Mapping[str, Any]], str]

# commas are left readable so join-style lists survive as ``a,b,c``
_SAFE = ","


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if value is None:
        return ""
    return str(value)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Iterable) and not isinstance(value, (str, bytes, Mapping))


def repeat_formatter(parameters: Mapping[str, Any]) -> str:
    """``{"k": [1, 2]}`` → ``k=1&k=2``."""
    pairs: list[tuple[str, str]] = []
    for key, value in parameters.items():
        if _is_sequence(value):
            pairs.extend((key, _scalar(v)) for v in value)
        else:
            pairs.append((key, _scalar(value)))
    return urlencode(pairs, safe=_SAFE)


def join_formatter(parameters: Mapping[str, Any]) -> str:
    """``{"k": [1, 2]}`` → ``k=1,2``."""
    pairs = [
        (key, ",".join(_scalar(v) for v in value) if _is_sequence(value) else _scalar(value))
        for key, value in parameters.items()
    ]
    return urlencode(pairs, safe=_SAFE)
