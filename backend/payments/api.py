import logging

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from .exceptions import PaymentPreconditionError, TransferFailed
from .services.escrow import settle_completed_bookings
from .services.final_payments import collect_due_final_payments
from .services.webhooks import process_webhook_queue, receive_event

logger = logging.getLogger(__name__)


def precondition_response(exc: PaymentPreconditionError) -> Response:
    return Response(exc.as_payload(), status=exc.http_status)


def payment_error_response(exc: Exception) -> Response:
    """Translate a payment-layer failure into the API's error payload."""
    if isinstance(exc, PaymentPreconditionError):
        return precondition_response(exc)
    if isinstance(exc, TransferFailed):
        return Response(
            {"detail": str(exc), "code": exc.code, "booking_id": exc.booking_id},
            status=status.HTTP_502_BAD_GATEWAY,
        )
    if isinstance(exc, stripe.error.StripeError):
        return Response({"detail": str(exc), "code": "stripe_error"}, status=status.HTTP_502_BAD_GATEWAY)
    if isinstance(exc, RuntimeError):
        return Response({"detail": str(exc)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    raise exc


class StripeWebhookView(APIView):
    """Receive Stripe webhook events (payments and Connect)."""

    permission_classes: list = []
    authentication_classes: list = []

    def post(self, request, *args, **kwargs):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE")
        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("Stripe webhook secret not configured.")
            return Response(status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            event = stripe.Webhook.construct_event(
                payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
            )
        except ValueError:
            logger.warning("Invalid payload received on Stripe webhook.")
            return Response(status=status.HTTP_400_BAD_REQUEST)
        except stripe.error.SignatureVerificationError:
            logger.warning("Invalid Stripe signature.")
            return Response(status=status.HTTP_400_BAD_REQUEST)

        entry = receive_event(event)
        return Response(
            {"received": True, "event_id": entry.event_id, "status": entry.processing_status},
            status=status.HTTP_200_OK,
        )


class SweepBaseView(APIView):
    permission_classes = [IsAdminUser]

    def run(self):
        raise NotImplementedError

    def post(self, request, *args, **kwargs):
        try:
            result = self.run()
        except (RuntimeError, stripe.error.StripeError) as exc:
            logger.exception("%s failed: %s", type(self).__name__, exc)
            return payment_error_response(exc)
        return Response(result.as_dict())


class FinalPaymentSweepView(SweepBaseView):
    """Collect every final payment that is due today or overdue."""

    def run(self):
        return collect_due_final_payments()


class SettlementSweepView(SweepBaseView):
    """Transfer funds for every completed escrow booking not yet settled."""

    def run(self):
        return settle_completed_bookings()


class WebhookQueueSweepView(SweepBaseView):
    def run(self):
        return process_webhook_queue()
