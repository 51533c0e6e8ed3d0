"""Stripe checkout sessions and webhook verification."""
import logging

import stripe

from .circuit_breaker import payment_circuit_breaker
from .config import settings
from .errors import PaymentWebhookError

logger = logging.getLogger(__name__)


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: str, currency: str = "usd"):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    @payment_circuit_breaker
    def create_checkout_session(
        self,
        *,
        tour,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        image_url: str,
    ) -> dict:
        session = stripe.checkout.Session.create(
            api_key=self.secret_key,
            payment_method_types=["card"],
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=customer_email,
            client_reference_id=str(tour.id),
            line_items=[
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": f"{tour.name} Tour",
                            "description": tour.summary,
                            "images": [image_url],
                        },
                        # amounts are in cents
                        "unit_amount": int(round(tour.price * 100)),
                    },
                    "quantity": 1,
                }
            ],
        )
        logger.info("Created checkout session %s for tour %s", session.id, tour.id)
        return {"id": session.id, "url": session.url}

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        """Verify the signature and return the event as plain dicts."""
        try:
            event = stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("Rejected webhook: %s", exc)
            raise PaymentWebhookError(f"Webhook error: {exc}")
        return event.to_dict()


def get_payment_gateway() -> StripeGateway:
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        currency=settings.currency,
    )
