"""Custom exceptions for the SimRec service.

Defines specific exception types for better error handling and reporting.
Each carries the HTTP status the API answers with.
"""

from typing import Any, Dict, Optional


class SimRecException(Exception):
    """Base exception for SimRec errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class InvalidRequestError(SimRecException):
    """Raised when a request body is missing fields or malformed."""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Request body is wrong: {reason}",
            status_code=400,
            details=details or {"reason": reason},
        )


class StoreError(SimRecException):
    """Raised when a store read or write fails."""

    def __init__(self, operation: str, error: Exception):
        message = f"Failed to {operation}: {str(error)}"
        super().__init__(
            message=message,
            status_code=500,
            details={
                "operation": operation,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class ClassificationError(SimRecException):
    """Raised when a product picture cannot be classified."""

    def __init__(self, product_id: str, error: Exception):
        message = f"Failed to classify product {product_id}: {str(error)}"
        super().__init__(
            message=message,
            status_code=502,
            details={
                "product_id": product_id,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class ModelNotFoundError(SimRecException):
    """Raised when classifier model files cannot be found."""

    def __init__(self, model_path: str, details: Optional[Dict[str, Any]] = None):
        message = f"Model not found at '{model_path}'. Please train a model first."
        super().__init__(
            message=message,
            status_code=503,
            details=details or {"model_path": model_path},
        )


class ModelLoadError(SimRecException):
    """Raised when the classifier model fails to load."""

    def __init__(self, model_path: str, error: Exception):
        message = f"Failed to load model from '{model_path}': {str(error)}"
        super().__init__(
            message=message,
            status_code=500,
            details={
                "model_path": model_path,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
