"""
Base class for value codecs.
"""

from abc import ABC, abstractmethod
from typing import Any


class BaseCodec(ABC):
    """Abstract base class for turning Python values into stored bytes and back."""

    #: Short identifier of the wire format, used in logs.
    content_type: str = "application/octet-stream"

    @abstractmethod
    def encode(self, value: Any) -> bytes:
        """
        Encode a value into a self-describing byte string.

        Args:
            value: The value to encode.

        Returns:
            The encoded bytes.

        Raises:
            SerializationError: If the value cannot be encoded.
        """
        pass

    @abstractmethod
    def decode(self, data: bytes, type_: Any = Any) -> Any:
        """
        Decode bytes into a value of the expected shape.

        Args:
            data: Bytes previously produced by ``encode``.
            type_: Destination type. ``Any`` returns the decoded structure as is.

        Returns:
            The decoded value.

        Raises:
            SerializationError: If the bytes are corrupt or do not fit ``type_``.
        """
        pass
