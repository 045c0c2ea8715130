class KVTxnError(Exception):
    """Base class for all kvtxn exceptions."""
    pass

class ConfigurationError(KVTxnError):
    """Raised when there is an error in the configuration."""
    def __init__(self, message: str, original_exception: Exception = None):
        super().__init__(message)
        self.original_exception = original_exception
        self.message = message

    def __str__(self) -> str:
        if self.original_exception:
            return f"{self.message} (Original: {str(self.original_exception)})"
        return self.message

class ValidationError(KVTxnError, ValueError):
    """Raised when input validation fails."""
    pass

class KeyNotFoundError(KVTxnError, KeyError):
    """Raised when a key read inside a transaction is absent from the store."""
    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Key not found: {self.key}"

class ConflictError(KVTxnError):
    """Raised when a watched key was modified by another actor before commit."""
    def __init__(self, message: str = "Watched key changed before commit", keys=None,
                 original_exception: Exception = None):
        super().__init__(message)
        self.message = message
        self.keys = tuple(keys or ())
        self.original_exception = original_exception

    def __str__(self) -> str:
        if self.keys:
            return f"{self.message}: {', '.join(self.keys)}"
        return self.message

class SerializationError(KVTxnError):
    """Raised when a value cannot be encoded or stored bytes cannot be decoded."""
    def __init__(self, message: str, original_exception: Exception = None):
        super().__init__(message)
        self.original_exception = original_exception
        self.message = message

    def __str__(self) -> str:
        if self.original_exception:
            return f"{self.message} (Original: {str(self.original_exception)})"
        return self.message

class TransactionClosedError(KVTxnError):
    """Raised when a transaction context is used after its attempt ended."""
    pass

class StoreError(KVTxnError):
    """Base class for store adapter related errors."""
    def __init__(self, message: str, original_exception: Exception = None):
        super().__init__(message)
        self.original_exception = original_exception
        self.message = message

    def __str__(self) -> str:
        if self.original_exception:
            return f"{self.message} (Original: {str(self.original_exception)})"
        return self.message

class StoreInitializationError(StoreError):
    """Raised when the store cannot be reached at startup."""
    pass

class StoreConnectionError(StoreError):
    """Raised when the store is unreachable during an operation."""
    pass

class StoreOperationError(StoreError):
    """Raised when a store operation (watch/get/commit/flush) fails."""
    pass
