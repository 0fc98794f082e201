from loyalty_api.services.notifications import CheckoutNotifier, WebhookCheckoutNotifier


def get_checkout_notifier() -> CheckoutNotifier:
    """Notification sink for committed checkouts; overridden in tests."""

    return WebhookCheckoutNotifier()
