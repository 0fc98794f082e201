"""Notification sinks."""

from .checkout import CheckoutNotifier, WebhookCheckoutNotifier  # noqa: F401
