"""
Exception hierarchy for the timed rebalancing system.

This module defines all custom exceptions used throughout the rebalancing
pipeline and its tools. Only request validation errors are meant to reach a
caller; data gaps and advisor failures are recorded and absorbed by the
pipeline.

Reference: Timed Rebalancing Framework (Error Handling)
"""

import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ErrorSeverity(Enum):
    """Categorizes the severity of errors for handling decisions."""

    WARNING = "warning"
    """Log but continue; we can proceed despite this issue"""

    INFO = "info"
    """Track but don't alarm; this is informational"""


@dataclass
class ProcessingError:
    """
    Structured error record for failures isolated to one ticker.

    Used to collect timing-data failures during a recommendation run so they
    can be logged and inspected without aborting the computation.
    """

    ticker: str
    """Ticker whose data could not be processed"""

    error_type: str
    """Category of error (e.g., "HISTORY_FETCH_ERROR", "NO_CURRENT_PRICE")"""

    message: str
    """Human-readable error message"""

    severity: ErrorSeverity
    """How serious is this error? WARNING/INFO"""

    traceback_str: Optional[str] = None
    """Full traceback for debugging (only for WARNING)"""

    context: dict = field(default_factory=dict)
    """Additional context data (window, price, row count, etc.)"""

    @classmethod
    def from_exception(
        cls,
        ticker: str,
        error_type: str,
        exception: Exception,
        severity: ErrorSeverity,
        context: Optional[dict] = None,
    ) -> "ProcessingError":
        """
        Create ProcessingError from a caught exception.

        Args:
            ticker: Ticker being processed
            error_type: Custom error category
            exception: The exception that was caught
            severity: How to categorize this error
            context: Optional additional context data

        Returns:
            ProcessingError with traceback automatically extracted
        """
        tb_str = traceback.format_exc() if severity == ErrorSeverity.WARNING else None
        return cls(
            ticker=ticker,
            error_type=error_type,
            message=str(exception),
            severity=severity,
            traceback_str=tb_str,
            context=context or {},
        )


# ============================================================================
# BASE EXCEPTION CLASSES
# ============================================================================

class RebalancingException(Exception):
    """
    Base exception for all timed rebalancing errors.

    Inheriting from this allows catching all framework errors:
        try:
            ...
        except RebalancingException as e:
            ...
    """

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__


class DataProcessingError(RebalancingException):
    """Base class for errors while fetching or processing market data."""
    pass


class ValidationError(RebalancingException):
    """Base class for input validation failures."""
    pass


class ConfigurationError(RebalancingException):
    """Base class for configuration/setup issues."""
    pass


class PipelineError(RebalancingException):
    """Base class for pipeline execution errors."""
    pass


# ============================================================================
# REQUEST VALIDATION EXCEPTIONS (invalid input)
# ============================================================================

class InvalidRequestError(ValidationError):
    """
    Raised when a recommendation request is rejected before computation.

    Surfaced to the caller as a client error.

    Example:
        raise InvalidRequestError("investment_amount must be positive, got -50")
    """
    pass


class PortfolioFormatError(ValidationError):
    """
    Raised when a portfolio snapshot file cannot be parsed.

    Example:
        raise PortfolioFormatError("holdings.csv is missing required column 'ticker'")
    """
    pass


# ============================================================================
# MARKET DATA EXCEPTIONS (Timing Filter)
# ============================================================================

class MarketDataError(DataProcessingError):
    """
    Raised by price providers when a quote or history cannot be fetched.

    The timing filter isolates this per ticker; it never aborts a run.

    Example:
        raise MarketDataError("No daily closes returned for VWCE.DE")
    """
    pass


# ============================================================================
# ADVISOR EXCEPTIONS (Optimizer Adapter)
# ============================================================================

class AdvisorResponseError(PipelineError):
    """
    Raised when an advisory reply is structurally invalid.

    Caught inside the advisor overlay, which falls back to the
    deterministic result.

    Example:
        raise AdvisorResponseError("Advisor reply 'actions' is not a list")
    """
    pass


# ============================================================================
# CONFIGURATION & SETUP EXCEPTIONS
# ============================================================================

class EnvConfigError(ConfigurationError):
    """
    Raised when an environment variable holds an unusable value.

    Example:
        raise EnvConfigError("REBALANCING_NOISE_THRESHOLD='ten' is not a number")
    """
    pass


class LLMConfigError(ConfigurationError):
    """
    Raised when LLM configuration is invalid or unavailable.

    Example:
        raise LLMConfigError("ANTHROPIC_API_KEY not configured; advisor disabled")
    """
    pass


# ============================================================================
# UTILITY FUNCTIONS FOR ERROR HANDLING
# ============================================================================

def wrap_exception_as_processing_error(
    exception: Exception,
    ticker: str,
    error_type: str,
    severity: ErrorSeverity = ErrorSeverity.WARNING,
) -> ProcessingError:
    """
    Convert any exception to ProcessingError for unified logging.

    Args:
        exception: The exception to wrap
        ticker: Ticker being processed
        error_type: Custom categorization
        severity: How to treat this error (default: WARNING)

    Returns:
        ProcessingError ready for logging
    """
    return ProcessingError.from_exception(
        ticker=ticker,
        error_type=error_type,
        exception=exception,
        severity=severity,
    )
