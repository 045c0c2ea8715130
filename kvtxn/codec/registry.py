"""
Process-wide registry of concrete types for dynamically typed values.

When a value is stored inside an ``Any``-typed container the decoder has no
destination type to rebuild it from. Registering the class once per process
lets the codec tag instances on encode and revive them on decode.
"""

import threading
from typing import Dict, Optional, Type

from kvtxn.exceptions import ConfigurationError
from kvtxn.utils.validation import validate_type_name


class TypeRegistry:
    """Bidirectional mapping between registered classes and their names."""

    def __init__(self):
        self._by_name: Dict[str, type] = {}
        self._by_type: Dict[type, str] = {}
        self._lock = threading.RLock()

    def register(self, cls: Type, name: Optional[str] = None) -> Type:
        """
        Register ``cls`` under ``name`` (defaults to its qualified name).

        Re-registering the same class under the same name is a no-op.

        Raises:
            ConfigurationError: If the name or class is already bound elsewhere.
        """
        if not isinstance(cls, type):
            raise ConfigurationError(f"Only classes can be registered, got {cls!r}")
        name = name or f"{cls.__module__}.{cls.__qualname__}"
        validate_type_name(name)

        with self._lock:
            existing = self._by_name.get(name)
            if existing is not None and existing is not cls:
                raise ConfigurationError(
                    f"Type name '{name}' is already registered for {existing.__qualname__}"
                )
            existing_name = self._by_type.get(cls)
            if existing_name is not None and existing_name != name:
                raise ConfigurationError(
                    f"{cls.__qualname__} is already registered as '{existing_name}'"
                )
            self._by_name[name] = cls
            self._by_type[cls] = name
        return cls

    def unregister(self, cls: Type) -> None:
        with self._lock:
            name = self._by_type.pop(cls, None)
            if name is not None:
                self._by_name.pop(name, None)

    def name_for(self, cls: Type) -> Optional[str]:
        return self._by_type.get(cls)

    def resolve(self, name: str) -> Optional[type]:
        return self._by_name.get(name)

    def __contains__(self, cls: object) -> bool:
        return cls in self._by_type

    def __len__(self) -> int:
        return len(self._by_type)


default_registry = TypeRegistry()


def register_type(cls: Optional[Type] = None, *, name: Optional[str] = None,
                  registry: Optional[TypeRegistry] = None):
    """
    Register a class for dynamic decoding.

    Works as a plain call (``register_type(Point)``) or as a decorator,
    with or without arguments (``@register_type(name="point")``).
    """
    target = registry if registry is not None else default_registry

    if cls is None:
        def decorator(inner: Type) -> Type:
            return target.register(inner, name)
        return decorator

    return target.register(cls, name)
