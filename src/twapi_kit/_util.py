from __future__ import annotations

import inspect, functools, types
import collections.abc as _abc
import pandas as pd

from typing import Iterable, Any, Sequence, get_origin, get_args, Union, get_type_hints, Mapping

from collections.abc import Sequence as ABCSequence

from ._errors import InvalidArgument

__all__ = [
    "_as_list",
    "_raise_invalid_argument",
    "runtime_typecheck",
    "_validate_enum",
    "_prune_none",
    "_paged_list",
    "_to_dataframe",
    "_is_numeric_id",
]

def _as_list(value: Any | Iterable[Any]) -> list[Any]:
    """Wrap a scalar in a list; materialise any other iterable."""
    if isinstance(value, (str, bytes, int)):
        return [value]
    return list(value)

def _is_numeric_id(value: Any) -> bool:
    """Twitch user IDs are digit strings; logins never are."""
    if isinstance(value, bool):
        return False
    return isinstance(value, int) or (isinstance(value, str) and value.isdigit())

def _raise_invalid_argument(param: str, value: Any, allowed: Iterable[Any]) -> None:
    allowed_set = sorted(map(str, set(allowed)))
    bullets = "\n  • " + "\n  • ".join(allowed_set)
    raise InvalidArgument(f"{param}={value!r} is invalid. Allowed values:{bullets}")

def _is_instance(val: Any, anno: Any) -> bool:

    origin = get_origin(anno)

    if origin is ABCSequence and isinstance(val, (str, bytes)):
        return False

    if origin is None:
        return anno is Any or isinstance(val, anno)

    if origin is Union or origin is types.UnionType:
        return any(_is_instance(val, arg) for arg in get_args(anno))

    if origin is Sequence and get_args(anno) == (str,):
        return isinstance(val, Sequence) and all(isinstance(v, str) for v in val)

    return isinstance(val, origin)

def runtime_typecheck(fn):

    sig   = inspect.signature(fn)
    hints = get_type_hints(fn)

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        bound = sig.bind_partial(*args, **kwargs)
        for name, value in bound.arguments.items():
            anno = hints.get(name)
            if anno and not _is_instance(value, anno):
                raise TypeError(
                    f"{fn.__name__}() argument '{name}' "
                    f"expects {anno}, got {type(value).__name__}"
                )
        return fn(*args, **kwargs)

    return wrapper

def _validate_enum(
    param_name: str,
    value: str | Sequence[str],
    allowed: set[str],
    *,
    allow_multi: bool = True,
) -> tuple[str, ...]:
    """Normalise *value* to a tuple and verify every element is in *allowed*."""

    if isinstance(value, str):
        items = [s.strip() for s in value.split(",")] if allow_multi else [value]
    elif isinstance(value, _abc.Iterable):
        items = list(value)
    else:
        raise TypeError(f"{param_name} must be str or Sequence[str]")

    if not items:
        raise InvalidArgument(f"{param_name} cannot be empty")

    if not set(items).issubset(allowed):
        _raise_invalid_argument(param_name, value, allowed)

    if not allow_multi and len(items) != 1:
        _raise_invalid_argument(param_name, value, allowed)

    return tuple(dict.fromkeys(items))

def _prune_none(mapping: Mapping[str, object]) -> dict[str, object]:
    """Return a new dict without the None-valued or empty-list keys."""
    return {k: v for k, v in mapping.items() if v is not None and v != [] and v != ()}

def _to_dataframe(items: Sequence[Mapping]) -> pd.DataFrame:
    """Flatten the ``data`` list returned by most Helix endpoints."""
    if not items:
        return pd.DataFrame()

    df = pd.json_normalize(list(items), sep=".")

    # ISO timestamps come back as strings
    for c in [c for c in df.columns if c.endswith("_at")]:
        df[c] = pd.to_datetime(df[c], errors="coerce", utc=True)

    return df

def _paged_list(fn, *, max_pages: int | None = None, **first_call_kwargs) -> pd.DataFrame:
    """
    Generic paginator: keeps calling *fn* until no cursor comes back.
    `fn` must return (items, next_cursor_or_None) and accept `after=`.
    """
    items, cursor = fn(after=None, **first_call_kwargs)
    frames = [_to_dataframe(items)]
    pages = 1

    while cursor and (max_pages is None or pages < max_pages):
        page_items, cursor = fn(after=cursor, **first_call_kwargs)
        frames.append(_to_dataframe(page_items))
        pages += 1

    frames = [f for f in frames if not f.empty]
    return pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
