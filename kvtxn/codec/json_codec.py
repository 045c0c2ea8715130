"""
JSON codec for kvtxn built on orjson and pydantic.

Values are written as plain JSON documents, so the bytes describe their own
structure and can be read back without knowing which encoder produced them.
The destination type passed to ``decode`` drives reconstruction of nested
dataclasses, pydantic models, enums, datetimes and other typed shapes, and is
checked with pydantic's strict JSON rules. Raw bytes and instances of
registered classes are carried in small marker objects.
"""

import base64
import binascii
import dataclasses
import math
import threading
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import orjson
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from kvtxn.codec.base import BaseCodec
from kvtxn.codec.registry import TypeRegistry, default_registry
from kvtxn.exceptions import SerializationError
from kvtxn.utils.logging import get_logger

logger = get_logger(__name__)

TYPE_TAG = "__kvtxn_type__"
VALUE_TAG = "__kvtxn_value__"
BYTES_TAG = "__kvtxn_bytes__"

_ENVELOPE_KEYS = frozenset((TYPE_TAG, VALUE_TAG))
_BYTES_KEYS = frozenset((BYTES_TAG,))

_DUMP_OPTIONS = orjson.OPT_PASSTHROUGH_DATACLASS | orjson.OPT_NON_STR_KEYS


class JSONCodec(BaseCodec):
    """
    orjson-backed codec with pydantic-driven typed decoding.

    Args:
        registry: Registry of classes to tag for dynamic decoding
            (defaults to the process-wide registry).
    """

    content_type = "application/json"

    def __init__(self, registry: Optional[TypeRegistry] = None):
        self.registry = registry if registry is not None else default_registry
        self._adapters: Dict[Any, TypeAdapter] = {}
        self._adapters_lock = threading.Lock()

    def encode(self, value: Any) -> bytes:
        try:
            self._check_encodable(value)
            return orjson.dumps(value, default=self._default, option=_DUMP_OPTIONS)
        except TypeError as e:  # orjson.JSONEncodeError is a TypeError
            logger.error("Failed to encode value", extra={
                "value_type": type(value).__name__,
                "error_type": type(e).__name__,
                "error_message": str(e)
            })
            raise SerializationError(
                f"Cannot encode value of type {type(value).__name__}", original_exception=e
            ) from e

    def decode(self, data: bytes, type_: Any = Any) -> Any:
        try:
            raw = orjson.loads(data)
        except (orjson.JSONDecodeError, TypeError) as e:
            logger.error("Failed to decode stored bytes", extra={
                "error_type": type(e).__name__,
                "error_message": str(e)
            })
            raise SerializationError("Corrupt data: not a valid encoded value", original_exception=e) from e

        try:
            if type_ is Any:
                return self._revive(raw)
            adapter = self._adapter(type_)
            plain, tagged = _strip_markers(raw)
            if not tagged:
                return adapter.validate_json(data, strict=True)
            # strict check of the plain document, then rebuild the marked values
            adapter.validate_json(orjson.dumps(plain), strict=True)
            return adapter.validate_python(self._revive(raw))
        except PydanticValidationError as e:
            raise SerializationError(
                f"Stored value does not match destination type {_type_name(type_)}",
                original_exception=e
            ) from e
        except TypeError as e:  # pydantic schema generation errors
            raise SerializationError(
                f"Unsupported destination type {_type_name(type_)}", original_exception=e
            ) from e

    def _check_encodable(self, obj: Any) -> None:
        """Reject values that orjson would write without error but lossily."""
        if isinstance(obj, float):
            if not math.isfinite(obj):
                raise _rejected(obj, f"Cannot encode non-finite float {obj!r}")
        elif isinstance(obj, dict):
            if all(isinstance(key, str) for key in obj):
                keys = list(obj)
            else:
                keys = [_key_text(key) for key in obj]
                if len(set(keys)) != len(keys):
                    raise _rejected(obj, "Cannot encode dict whose keys collide as JSON strings")
            if len(keys) <= 2 and frozenset(keys) in (_ENVELOPE_KEYS, _BYTES_KEYS):
                raise _rejected(obj, f"Cannot encode dict with reserved keys {sorted(keys)}")
            for item in obj.values():
                self._check_encodable(item)
        elif isinstance(obj, (list, tuple, set, frozenset)):
            for item in obj:
                self._check_encodable(item)
        elif dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            for f in dataclasses.fields(obj):
                self._check_encodable(getattr(obj, f.name))
        elif isinstance(obj, BaseModel):
            for name in type(obj).model_fields:
                self._check_encodable(getattr(obj, name))

    def _default(self, obj: Any) -> Any:
        """orjson fallback for objects it does not serialize natively."""
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            fields = {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
        elif isinstance(obj, BaseModel):
            fields = {
                (info.alias or name): getattr(obj, name)
                for name, info in type(obj).model_fields.items()
            }
        elif isinstance(obj, (bytes, bytearray, memoryview)):
            return {BYTES_TAG: base64.b64encode(obj).decode("ascii")}
        elif isinstance(obj, (set, frozenset)):
            return list(obj)
        elif isinstance(obj, Decimal):
            return str(obj)
        else:
            raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")

        name = self.registry.name_for(type(obj))
        if name is None:
            return fields
        return {TYPE_TAG: name, VALUE_TAG: fields}

    def _revive(self, raw: Any) -> Any:
        """Rebuild bytes and registered instances from their markers, depth first."""
        if isinstance(raw, list):
            return [self._revive(item) for item in raw]
        if not isinstance(raw, dict):
            return raw
        if raw.keys() == _BYTES_KEYS:
            try:
                return base64.b64decode(raw[BYTES_TAG], validate=True)
            except (binascii.Error, TypeError, ValueError) as e:
                raise SerializationError("Corrupt data: invalid bytes marker", original_exception=e) from e
        if raw.keys() == _ENVELOPE_KEYS:
            name = raw[TYPE_TAG]
            cls = self.registry.resolve(name)
            if cls is None:
                raise SerializationError(f"Unknown type tag '{name}'; register the type before decoding")
            return self._adapter(cls).validate_python(self._revive(raw[VALUE_TAG]))
        return {key: self._revive(value) for key, value in raw.items()}

    def _adapter(self, type_: Any) -> TypeAdapter:
        try:
            adapter = self._adapters.get(type_)
        except TypeError:
            # unhashable type expression
            return TypeAdapter(type_)
        if adapter is None:
            adapter = TypeAdapter(type_)
            with self._adapters_lock:
                self._adapters[type_] = adapter
        return adapter


def _strip_markers(raw: Any) -> Tuple[Any, bool]:
    """Replace markers by their JSON payload; also report whether any was found."""
    if isinstance(raw, list):
        stripped = [_strip_markers(item) for item in raw]
        return [item for item, _ in stripped], any(found for _, found in stripped)
    if not isinstance(raw, dict):
        return raw, False
    if raw.keys() == _BYTES_KEYS:
        return raw[BYTES_TAG], True
    if raw.keys() == _ENVELOPE_KEYS:
        return _strip_markers(raw[VALUE_TAG])[0], True
    stripped = {key: _strip_markers(value) for key, value in raw.items()}
    return {key: item for key, (item, _) in stripped.items()}, any(found for _, found in stripped.values())


def _key_text(key: Any) -> str:
    """The JSON object key orjson writes for a non-string dict key."""
    if isinstance(key, str):
        return key
    text = orjson.loads(orjson.dumps(key))
    return text if isinstance(text, str) else orjson.dumps(key).decode()


def _rejected(value: Any, message: str) -> SerializationError:
    logger.error("Refused to encode value", extra={
        "value_type": type(value).__name__,
        "error_message": message
    })
    return SerializationError(message)


def _type_name(type_: Any) -> str:
    return getattr(type_, "__qualname__", None) or repr(type_)
