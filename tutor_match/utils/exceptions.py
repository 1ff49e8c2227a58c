"""
Custom Exception Classes for the Tutor Matching Service
"""
import asyncio
import functools
import inspect
import time
from random import uniform
from typing import Dict, Any

from fastapi import HTTPException


class MatchingBaseException(Exception):
    """Base exception for the matching service"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None,
        cause: Exception = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/response"""
        result = {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class NotFoundError(MatchingBaseException):
    """Raised when a source listing, candidate or profile does not exist"""

    def __init__(self, message: str, entity: str = None, entity_id: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if entity:
            details['entity'] = entity
        if entity_id:
            details['entity_id'] = entity_id
        super().__init__(message, error_code="NOT_FOUND", details=details, **kwargs)


class ValidationError(MatchingBaseException):
    """Raised when request data validation fails"""

    def __init__(self, message: str, field: str = None, value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if field:
            details['field'] = field
        if value is not None:
            details['invalid_value'] = str(value)
        super().__init__(message, error_code="VALIDATION_ERROR", details=details, **kwargs)


class DatabaseError(MatchingBaseException):
    """Raised when database operations fail"""

    def __init__(self, message: str, operation: str = None, collection: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if operation:
            details['operation'] = operation
        if collection:
            details['collection'] = collection
        super().__init__(message, error_code="DATABASE_ERROR", details=details, **kwargs)


class ConfigurationError(MatchingBaseException):
    """Raised when configuration is invalid or missing"""

    def __init__(self, message: str, config_key: str = None, config_value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if config_key:
            details['config_key'] = config_key
        if config_value is not None:
            details['config_value'] = str(config_value)
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details, **kwargs)


class EmbeddingUnavailableError(MatchingBaseException):
    """Raised when the embedding or text provider has no credential configured"""

    def __init__(self, message: str = "AI provider is not configured", service_name: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if service_name:
            details['service_name'] = service_name
        super().__init__(message, error_code="AI_UNAVAILABLE", details=details, **kwargs)


class ExternalServiceError(MatchingBaseException):
    """Raised when external service calls fail"""

    def __init__(self, message: str, service_name: str = None, status_code: int = None, **kwargs):
        details = kwargs.pop('details', {})
        if service_name:
            details['service_name'] = service_name
        if status_code:
            details['status_code'] = status_code
        super().__init__(message, error_code="EXTERNAL_SERVICE_ERROR", details=details, **kwargs)


class RateLimitError(ExternalServiceError):
    """Raised when a provider rejects a call for quota or rate limits (HTTP 429)"""

    def __init__(self, message: str, service_name: str = None, retry_after: float = None, **kwargs):
        details = kwargs.pop('details', {})
        if retry_after is not None:
            details['retry_after'] = retry_after
        super().__init__(message, service_name=service_name, status_code=429, details=details, **kwargs)
        self.error_code = "RATE_LIMIT_ERROR"


class ExplanationError(MatchingBaseException):
    """Raised when the explanation generator fails or returns malformed output"""

    def __init__(self, message: str, candidate_id: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if candidate_id:
            details['candidate_id'] = candidate_id
        super().__init__(message, error_code="EXPLANATION_ERROR", details=details, **kwargs)


class DimensionMismatchError(MatchingBaseException):
    """Raised when two vectors of different length are compared"""

    def __init__(self, left: int, right: int, **kwargs):
        super().__init__(
            f"Vector dimensions differ: {left} != {right}",
            error_code="DIMENSION_MISMATCH",
            details={"left_dimensions": left, "right_dimensions": right},
            **kwargs
        )


def map_to_http_exception(exc: MatchingBaseException) -> HTTPException:
    """Map custom exceptions to HTTP exceptions"""

    status_code_mapping = {
        NotFoundError: 404,
        ValidationError: 400,
        ConfigurationError: 400,
        DatabaseError: 500,
        DimensionMismatchError: 500,
        EmbeddingUnavailableError: 503,
        RateLimitError: 429,
        ExternalServiceError: 502,
        ExplanationError: 502,
    }

    status_code = status_code_mapping.get(type(exc), 500)

    detail = {
        "error": exc.to_dict(),
        "message": exc.message
    }

    return HTTPException(status_code=status_code, detail=detail)


def retry_with_logging(
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    exceptions: tuple = (Exception,),
    logger=None
):
    """Decorator to retry operations with exponential backoff and logging"""

    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if logger:
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {str(e)}"
                        )
                    if attempt == max_attempts - 1:
                        if logger:
                            logger.error(f"All {max_attempts} attempts failed for {func.__name__}")
                        raise
                    await asyncio.sleep(backoff_factor * (2 ** attempt) + uniform(0, 1))

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if logger:
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {str(e)}"
                        )
                    if attempt == max_attempts - 1:
                        if logger:
                            logger.error(f"All {max_attempts} attempts failed for {func.__name__}")
                        raise
                    time.sleep(backoff_factor * (2 ** attempt) + uniform(0, 1))

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
