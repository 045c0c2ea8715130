"""
Codec package for kvtxn.

Serializes transaction values into self-describing bytes and back.
"""

from .base import BaseCodec
from .registry import TypeRegistry, default_registry, register_type
from .json_codec import JSONCodec

__all__ = [
    "BaseCodec",
    "JSONCodec",
    "TypeRegistry",
    "default_registry",
    "register_type",
]
