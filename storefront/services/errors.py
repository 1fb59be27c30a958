# storefront/services/errors.py
from __future__ import annotations


class OrderValidationError(ValueError):
    """Client-supplied input was rejected; the message is shown to the caller."""


class ServiceNotConfigured(RuntimeError):
    """A required third-party credential (Stripe, Postgres) is missing."""


class PaymentProcessorError(RuntimeError):
    """Stripe rejected or failed a request."""


class OrderNotFound(LookupError):
    pass


class InvalidStatusTransition(ValueError):
    pass


class OrderPersistenceError(RuntimeError):
    """The order could not be stored; nothing was left behind."""


class PaymentProcessorUnavailable(PaymentProcessorError):
    """Stripe could not be reached or failed on its side; safe to retry later."""


class CheckoutSessionNotFound(PaymentProcessorError):
    """Stripe has no checkout session with the given id."""
