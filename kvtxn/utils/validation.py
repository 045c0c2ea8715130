from typing import Any

from kvtxn.exceptions import ValidationError

MAX_KEY_LENGTH = 512 * 1024 * 1024  # Redis hard limit on key size


def validate_key(key: str):
    """Ensures a store key is a non-empty string."""
    if not isinstance(key, str):
        raise ValidationError(f"Key must be a string, got {type(key).__name__}.")

    if not key:
        raise ValidationError("Key must be a non-empty string.")

    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError("Key is too long. Maximum length is 512MB.")


def validate_max_attempts(max_attempts: Any):
    """Checks that the attempt budget is a positive integer."""
    if isinstance(max_attempts, bool) or not isinstance(max_attempts, int):
        raise ValidationError("max_attempts must be an integer.")

    if max_attempts < 1:
        raise ValidationError(f"max_attempts must be at least 1, got {max_attempts}.")


def validate_type_name(name: Any):
    """Ensures a codec type registration name is a non-empty string."""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Registered type name must be a non-empty string.")
