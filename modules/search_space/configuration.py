import hashlib
import json
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Dict, Optional

import numpy as np

from utils.file_io import NumpyEncoder


def _normalize(value: Any) -> Any:
    """Coerce NumPy scalars and sequences into hashable plain Python values."""
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return tuple(_normalize(v) for v in value.tolist())
    if isinstance(value, (list, tuple)):
        return tuple(_normalize(v) for v in value)
    return value


class Configuration(Mapping):
    """
    One assignment of values to the tunable parameters of a model.

    Immutable; equality and hashing cover the full key/value content, so two
    configurations built from the same values deduplicate in sets and dicts.
    """

    __slots__ = ('_data', '_items', '_hash')

    def __init__(self, values: Optional[Mapping] = None, **kwargs):
        merged = dict(values or {})
        merged.update(kwargs)
        data = {str(k): _normalize(v) for k, v in merged.items()}
        self._items = tuple(sorted(data.items()))
        self._data = MappingProxyType(dict(self._items))
        self._hash = hash(self._items)

    def __getitem__(self, key):
        return self._data[key]

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)

    def __hash__(self):
        return self._hash

    def __eq__(self, other):
        if isinstance(other, Configuration):
            return self._items == other._items
        if isinstance(other, Mapping):
            return self._items == Configuration(other)._items
        return NotImplemented

    def __repr__(self):
        body = ", ".join(f"{k}={v!r}" for k, v in self._items)
        return f"Configuration({body})"

    def __reduce__(self):
        return (Configuration, (dict(self._items),))

    def to_dict(self) -> Dict[str, Any]:
        return {k: list(v) if isinstance(v, tuple) else v for k, v in self._items}

    def signature(self) -> str:
        """Deterministic md5 of the sorted JSON form, used for resume and caching."""
        payload = json.dumps(self.to_dict(), sort_keys=True, cls=NumpyEncoder)
        return hashlib.md5(payload.encode()).hexdigest()
