"""
Query-string helpers shared by the carrier client and the proxy routes.

Sequences travel as repeated ``key[]=value`` pairs. ``serialize_params``
and ``collapse_params`` are exact inverses for string values.
"""

from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple, Union

QueryValue = Union[str, int, float, bool, None, Sequence[Any]]
ARRAY_SUFFIX = "[]"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def serialize_params(params: Mapping[str, QueryValue]) -> List[Tuple[str, str]]:
    """Flatten params into ordered (key, value) pairs, skipping ``None``."""
    pairs: List[Tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((f"{key}{ARRAY_SUFFIX}", _stringify(item)) for item in value)
        else:
            pairs.append((key, _stringify(value)))
    return pairs


def collapse_params(items: Iterable[Tuple[str, str]]) -> Dict[str, Union[str, List[str]]]:
    """Collapse incoming ``key[]`` pairs back into lists."""
    params: Dict[str, Union[str, List[str]]] = {}
    for key, value in items:
        if key.endswith(ARRAY_SUFFIX):
            clean_key = key[: -len(ARRAY_SUFFIX)]
            existing = params.get(clean_key)
            if not isinstance(existing, list):
                existing = []
                params[clean_key] = existing
            existing.append(value)
        else:
            params[key] = value
    return params
