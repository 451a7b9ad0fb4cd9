"""
Custom exceptions for MDB_CONNECTOR.

These exceptions provide specific error types for the connector while
maintaining compatibility with RuntimeError. Errors raised by the MongoDB
driver itself are never wrapped: callers match on the driver's messages.
"""

from typing import Any, Dict, Optional


class MongoDBConnectorError(RuntimeError):
    """
    Base exception for MongoDB connector errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (database,
                 collection, operation, etc.)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class ConfigurationError(MongoDBConnectorError):
    """
    Raised when configuration is invalid or no usable database block exists.

    Attributes:
        message: Error message
        config_key: Configuration key that caused the error (if available)
        config_value: Configuration value that caused the error (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value
        super().__init__(message, context=context)
        self.config_key = config_key
        self.config_value = config_value


class DisconnectedError(MongoDBConnectorError):
    """
    Raised when an operation is attempted while the connection is not CONNECTED.

    The message is always ``DB_DISCONNECTED`` so host frameworks can match it.
    """

    MESSAGE = "DB_DISCONNECTED"

    def __init__(
        self,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if operation:
            context["operation"] = operation
        super().__init__(self.MESSAGE, context=context)
        self.operation = operation


class BadQueryError(MongoDBConnectorError):
    """
    Raised when the store rejects a query as malformed.

    Attributes:
        collection: Collection the query ran against (if available)
        code: Error code reported by the store (if available)
    """

    MESSAGE = "BAD_QUERY"

    def __init__(
        self,
        collection: Optional[str] = None,
        code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if collection:
            context["collection"] = collection
        if code is not None:
            context["code"] = code
        super().__init__(self.MESSAGE, context=context)
        self.collection = collection
        self.code = code
