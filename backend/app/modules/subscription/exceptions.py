"""Exceptions raised by the subscription module."""


class SubscriptionServiceError(Exception):
    """Base exception for subscription errors."""
    pass


class ConfigurationError(SubscriptionServiceError, ValueError):
    """Raised when a billing configuration is malformed.

    Examples: unknown billing cycle, non-positive interval, a month-based
    cycle without an anchor day.
    """
    pass


class InvariantViolation(SubscriptionServiceError):
    """Raised when a mutation would contradict recorded payment history."""
    pass


class ConcurrencyConflict(SubscriptionServiceError):
    """Raised when a payment for the same occurrence was recorded concurrently.

    The caller may retry; the retry will see the new payment count.
    """
    pass


class SubscriptionNotFoundError(SubscriptionServiceError):
    """Raised when a subscription is not found."""
    pass


class PaymentNotFoundError(SubscriptionServiceError):
    """Raised when a payment record is not found."""
    pass
