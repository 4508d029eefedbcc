"""Error taxonomy and centralized error handling for the product ranker."""

import asyncio
import inspect
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    CONFIGURATION = "configuration"
    DATA_INTEGRITY = "data_integrity"
    EMBEDDING = "embedding"
    VALIDATION = "validation"
    STORE = "store"
    NETWORK = "network"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Context information for errors."""
    component: str
    operation: str
    product_id: Optional[int] = None
    query: Optional[str] = None
    job_id: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)
    additional_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorResponse:
    """Standardized error response model."""
    error_code: str
    message: str
    severity: ErrorSeverity
    category: ErrorCategory
    context: ErrorContext
    timestamp: datetime = field(default_factory=datetime.now)
    suggestions: List[str] = field(default_factory=list)
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error response to dictionary."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "timestamp": self.timestamp.isoformat(),
            "suggestions": self.suggestions,
            "context": {
                "component": self.context.component,
                "operation": self.context.operation,
                "product_id": self.context.product_id,
                "query": self.context.query,
                "job_id": self.context.job_id,
                "timestamp": self.context.timestamp.isoformat(),
                "additional_data": self.context.additional_data
            },
            "details": self.details
        }


class RankerError(Exception):
    """Base exception for product ranker errors."""

    def __init__(self, message: str, error_response: Optional[ErrorResponse] = None):
        super().__init__(message)
        self.error_response = error_response
        self.message = message


class ConfigurationError(RankerError):
    """Ranking configuration is missing or unusable for scoring."""
    pass


class DataIntegrityError(RankerError):
    """Stored data violates an index invariant (e.g. embedding dimension)."""

    def __init__(self, message: str, product_id: Optional[int] = None,
                 expected_dimension: Optional[int] = None, actual_dimension: Optional[int] = None):
        super().__init__(message)
        self.product_id = product_id
        self.expected_dimension = expected_dimension
        self.actual_dimension = actual_dimension


class EmbeddingFailure(RankerError):
    """The embedder could not produce a vector for a piece of text."""
    pass


class InvalidJobTransition(RankerError):
    """An upload job was asked to move to a state not reachable from its current one."""
    pass


class StoreError(RankerError):
    """The backing store rejected or failed an operation."""
    pass


class CircuitBreakerError(RankerError):
    """Exception raised when circuit breaker is open."""
    pass


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5
    recovery_timeout: int = 60
    expected_exception: Type[Exception] = Exception
    name: Optional[str] = None


class CircuitBreaker:
    """Circuit breaker guarding calls to an upstream service."""

    def __init__(self, config: CircuitBreakerConfig):
        self.config = config
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = CircuitBreakerState.CLOSED
        self.name = config.name or "unnamed"

        logger.debug(f"Circuit breaker '{self.name}' initialized with threshold {config.failure_threshold}")

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection.

        Raises:
            CircuitBreakerError: If circuit breaker is open
        """
        if self.state == CircuitBreakerState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitBreakerState.HALF_OPEN
                logger.info(f"Circuit breaker '{self.name}' transitioning to HALF_OPEN")
            else:
                raise CircuitBreakerError(
                    f"Circuit breaker '{self.name}' is OPEN. "
                    f"Next retry in {self._time_until_retry()} seconds."
                )

        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            self._on_success()
            return result
        except self.config.expected_exception:
            self._on_failure()
            raise

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        elapsed = (datetime.now() - self.last_failure_time).total_seconds()
        return elapsed >= self.config.recovery_timeout

    def _time_until_retry(self) -> int:
        if self.last_failure_time is None:
            return 0
        elapsed = (datetime.now() - self.last_failure_time).total_seconds()
        return max(0, int(self.config.recovery_timeout - elapsed))

    def _on_success(self) -> None:
        if self.state == CircuitBreakerState.HALF_OPEN:
            logger.info(f"Circuit breaker '{self.name}' reset to CLOSED")
        self.failure_count = 0
        self.state = CircuitBreakerState.CLOSED

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = datetime.now()

        if self.failure_count >= self.config.failure_threshold:
            self.state = CircuitBreakerState.OPEN
            logger.warning(f"Circuit breaker '{self.name}' opened after {self.failure_count} failures")

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state information."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.config.failure_threshold,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "time_until_retry": self._time_until_retry() if self.state == CircuitBreakerState.OPEN else 0
        }

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        self.failure_count = 0
        self.last_failure_time = None
        self.state = CircuitBreakerState.CLOSED
        logger.info(f"Circuit breaker '{self.name}' manually reset")


class ErrorHandler:
    """Centralized error handler for standardized error processing."""

    def __init__(self):
        self.error_counts: Dict[str, int] = {}
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}

    def create_circuit_breaker(self, name: str, config: CircuitBreakerConfig) -> CircuitBreaker:
        """Create and register a circuit breaker.

        Args:
            name: Circuit breaker name
            config: Circuit breaker configuration

        Returns:
            Created circuit breaker instance
        """
        config.name = name
        circuit_breaker = CircuitBreaker(config)
        self.circuit_breakers[name] = circuit_breaker
        return circuit_breaker

    def handle_error(self, error: Exception, context: ErrorContext) -> ErrorResponse:
        """Classify, count and log an error.

        Args:
            error: Exception that occurred
            context: Error context information

        Returns:
            Standardized error response
        """
        error_code, category, severity = self._classify_error(error)

        error_response = ErrorResponse(
            error_code=error_code,
            message=str(error),
            severity=severity,
            category=category,
            context=context,
            suggestions=self._generate_suggestions(category),
            details=self._extract_error_details(error)
        )

        self._track_error(error_code, context)
        self._log_error(error_response, error)

        return error_response

    def _classify_error(self, error: Exception) -> Tuple[str, ErrorCategory, ErrorSeverity]:
        """Classify error and determine code, category, and severity."""
        error_type = type(error).__name__

        if isinstance(error, ConfigurationError):
            return "CONFIG_INVALID_WEIGHTS", ErrorCategory.CONFIGURATION, ErrorSeverity.HIGH

        if isinstance(error, DataIntegrityError):
            return "DATA_INTEGRITY_VIOLATION", ErrorCategory.DATA_INTEGRITY, ErrorSeverity.MEDIUM

        if isinstance(error, CircuitBreakerError):
            return "CIRCUIT_BREAKER_OPEN", ErrorCategory.EMBEDDING, ErrorSeverity.MEDIUM

        if isinstance(error, EmbeddingFailure):
            return "EMBEDDING_FAILED", ErrorCategory.EMBEDDING, ErrorSeverity.MEDIUM

        if isinstance(error, InvalidJobTransition):
            return "JOB_INVALID_TRANSITION", ErrorCategory.VALIDATION, ErrorSeverity.MEDIUM

        if isinstance(error, StoreError):
            return f"STORE_{error_type.upper()}", ErrorCategory.STORE, ErrorSeverity.HIGH

        if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or "Timeout" in error_type:
            return f"TIMEOUT_{error_type.upper()}", ErrorCategory.TIMEOUT, ErrorSeverity.MEDIUM

        if "Connection" in error_type or "Network" in error_type:
            return f"NETWORK_{error_type.upper()}", ErrorCategory.NETWORK, ErrorSeverity.HIGH

        if isinstance(error, (ValueError, TypeError)):
            return f"VALIDATION_{error_type.upper()}", ErrorCategory.VALIDATION, ErrorSeverity.LOW

        return f"INTERNAL_{error_type.upper()}", ErrorCategory.INTERNAL, ErrorSeverity.MEDIUM

    def _generate_suggestions(self, category: ErrorCategory) -> List[str]:
        """Generate operator hints based on error category."""
        if category == ErrorCategory.CONFIGURATION:
            return [
                "Check that exactly one ranking weights row is active",
                "Ensure all ranking weights are non-negative",
            ]
        if category == ErrorCategory.DATA_INTEGRITY:
            return [
                "Re-run the embedding refresh for the affected products",
                "Verify the embedder dimension matches the stored index",
            ]
        if category == ErrorCategory.EMBEDDING:
            return [
                "Check the embedding service endpoint and credentials",
                "Re-run the refresh once the embedder is reachable",
            ]
        if category in (ErrorCategory.NETWORK, ErrorCategory.TIMEOUT):
            return ["Check network connectivity", "Consider increasing timeout values"]
        if category == ErrorCategory.VALIDATION:
            return ["Check input data format and values"]
        return []

    def _extract_error_details(self, error: Exception) -> Dict[str, Any]:
        """Extract serializable attributes from an error."""
        details = {
            "type": type(error).__name__,
            "message": str(error),
            "traceback": traceback.format_exc()
        }

        for key, value in vars(error).items():
            if key.startswith('_') or key in ('args', 'error_response'):
                continue
            if isinstance(value, (str, int, float, bool, list, dict)):
                details[key] = value

        return details

    def _track_error(self, error_code: str, context: ErrorContext) -> None:
        tracking_key = f"{context.component}:{error_code}"
        self.error_counts[tracking_key] = self.error_counts.get(tracking_key, 0) + 1

    def _log_error(self, error_response: ErrorResponse, original_error: Exception) -> None:
        """Log error with a level based on severity."""
        log_message = (
            f"Error in {error_response.context.component}.{error_response.context.operation}: "
            f"{error_response.message}"
        )

        if error_response.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message, exc_info=original_error)
        elif error_response.severity == ErrorSeverity.HIGH:
            logger.error(log_message, exc_info=original_error)
        elif error_response.severity == ErrorSeverity.MEDIUM:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def get_error_statistics(self) -> Dict[str, Any]:
        """Get error statistics for monitoring."""
        return {
            "total_errors": sum(self.error_counts.values()),
            "error_counts_by_type": dict(self.error_counts),
            "circuit_breaker_states": {
                name: cb.get_state()
                for name, cb in self.circuit_breakers.items()
            }
        }

    def reset_statistics(self) -> None:
        """Reset error statistics."""
        self.error_counts.clear()
        logger.info("Error statistics reset")


# Global error handler instance
error_handler = ErrorHandler()


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    return error_handler
