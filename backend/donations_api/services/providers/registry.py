from donations_api.core.config import Settings
from donations_api.services.providers.bank_transfer import BankTransferProvider
from donations_api.services.providers.base import PaymentProvider
from donations_api.services.providers.paypal_provider import PayPalProvider
from donations_api.services.providers.stripe_provider import (
    ApplePayProvider,
    GooglePayProvider,
    StripeProvider,
)


def build_provider_registry(settings: Settings) -> dict[str, PaymentProvider]:
    """Map each payment method to the provider that settles it."""
    stripe_kwargs = {
        "secret_key": settings.STRIPE_SECRET_KEY,
        "webhook_secret": settings.STRIPE_WEBHOOK_SECRET,
        "tolerance": settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    }
    return {
        "stripe": StripeProvider(**stripe_kwargs),
        "apple_pay": ApplePayProvider(**stripe_kwargs),
        "google_pay": GooglePayProvider(**stripe_kwargs),
        "paypal": PayPalProvider(
            client_id=settings.PAYPAL_CLIENT_ID,
            secret=settings.PAYPAL_SECRET,
            webhook_id=settings.PAYPAL_WEBHOOK_ID,
            plan_ids=settings.PAYPAL_PLAN_IDS,
            base_url=settings.paypal_base_url,
        ),
        "pakistan_gateway": BankTransferProvider(),
    }
