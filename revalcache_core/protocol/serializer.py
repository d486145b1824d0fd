"""RevalCache Serializer - Entry Serialization for Persistent Stores.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import base64
import json
import logging
import pickle
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from revalcache_core.cache.entry import CacheEntry

logger = logging.getLogger(__name__)


class Serializer(ABC):
    """Turns entry payloads into bytes and back.

    Subclasses only handle plain values; ``dump_entry`` and
    ``load_entry`` go through ``CacheEntry.to_dict()`` so every format
    carries the same fields.
    """

    format_name: str = ""

    @abstractmethod
    def serialize(self, value: Any) -> bytes:
        pass

    @abstractmethod
    def deserialize(self, data: bytes) -> Any:
        pass

    def dump_entry(self, entry: CacheEntry) -> bytes:
        return self.serialize(entry.to_dict())

    def load_entry(self, data: bytes) -> CacheEntry:
        return CacheEntry.from_dict(self.deserialize(data))


class JSONSerializer(Serializer):
    """JSON with bytes support.

    Bytes values travel as ``{"__bytes__": "<base64>"}`` so raw response
    bodies survive. Anything else must already be JSON-compatible.
    """

    format_name = "json"
    _BYTES_MARKER = "__bytes__"

    def serialize(self, value: Any) -> bytes:
        return json.dumps(value, default=self._encode).encode("utf-8")

    def deserialize(self, data: bytes) -> Any:
        return json.loads(data.decode("utf-8"), object_hook=self._decode)

    def _encode(self, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return {self._BYTES_MARKER: base64.b64encode(bytes(value)).decode("ascii")}
        raise TypeError(f"{type(value).__name__} is not JSON serializable")

    def _decode(self, obj: Dict[str, Any]) -> Any:
        if len(obj) == 1 and self._BYTES_MARKER in obj:
            return base64.b64decode(obj[self._BYTES_MARKER])
        return obj


class PickleSerializer(Serializer):
    """Pickle, for arbitrary Python values. Only load data you wrote."""

    format_name = "pickle"

    def serialize(self, value: Any) -> bytes:
        return pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)

    def deserialize(self, data: bytes) -> Any:
        return pickle.loads(data)


class MsgPackSerializer(Serializer):
    """MessagePack, compact and bytes-native. Needs the msgpack package."""

    format_name = "msgpack"

    @staticmethod
    def _msgpack():
        try:
            import msgpack
        except ImportError:
            raise ImportError("msgpack is required for this format. Run: pip install msgpack")
        return msgpack

    def serialize(self, value: Any) -> bytes:
        return self._msgpack().packb(value, use_bin_type=True)

    def deserialize(self, data: bytes) -> Any:
        return self._msgpack().unpackb(data, raw=False)


class SerializerRegistry:
    """Serializers by format name; pickle unless told otherwise."""

    def __init__(self, default: str = "pickle"):
        self._formats: Dict[str, Serializer] = {}
        self._default = default
        for serializer in (JSONSerializer(), PickleSerializer(), MsgPackSerializer()):
            self.register(serializer)

    def register(self, serializer: Serializer) -> None:
        self._formats[serializer.format_name] = serializer

    def get(self, format_name: Optional[str] = None) -> Serializer:
        """Look up a serializer.

        Raises:
            KeyError: If no serializer is registered under the name
        """
        name = format_name or self._default
        try:
            return self._formats[name]
        except KeyError:
            raise KeyError(f"Unknown serializer format: {name}") from None

    def list_formats(self) -> List[str]:
        return sorted(self._formats)


_registry = SerializerRegistry()


def get_serializer(format_name: Optional[str] = None) -> Serializer:
    """Serializer for a format name, the default one for None."""
    return _registry.get(format_name)


__all__ = [
    "Serializer",
    "JSONSerializer",
    "PickleSerializer",
    "MsgPackSerializer",
    "SerializerRegistry",
    "get_serializer",
]
