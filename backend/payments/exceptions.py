from rest_framework import status


class PaymentPreconditionError(Exception):
    """
    A charge, collection or settlement was refused before any money moved.

    Each subclass carries a stable ``code`` for API clients and the HTTP status
    the API layer answers with.
    """

    code = "payment_precondition_failed"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "The payment could not be processed."

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def as_payload(self) -> dict:
        payload = {"detail": self.message, "code": self.code}
        payload.update(self.context)
        return payload


class BookingNotFound(PaymentPreconditionError):
    code = "booking_not_found"
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "Booking not found."


class GuideNotPayable(PaymentPreconditionError):
    code = "guide_not_payable"
    default_message = (
        "This guide has not set up payment processing yet. "
        "Please contact them directly or try another tour."
    )


class GuideAccountNotReady(PaymentPreconditionError):
    code = "guide_account_not_ready"
    default_message = (
        "The guide's Stripe account is not enabled to receive funds. "
        "The guide must complete verification."
    )


class DepositNotOffered(PaymentPreconditionError):
    code = "deposit_not_offered"
    default_message = "This guide does not accept deposits. Full payment is required."


class DepositWindowClosed(PaymentPreconditionError):
    code = "deposit_window_closed"
    default_message = "This tour date is too close for a deposit. Full payment is required."


class DepositCoversBooking(PaymentPreconditionError):
    code = "deposit_covers_booking"
    default_message = (
        "The deposit leaves no balance large enough to charge later. Full payment is required."
    )


class InvalidChargeAmounts(PaymentPreconditionError):
    code = "invalid_charge_amounts"
    default_message = "The quoted amounts are inconsistent. Please request a new quote."


class LegacyBookingNoActionNeeded(PaymentPreconditionError):
    code = "legacy_booking"
    http_status = status.HTTP_200_OK
    default_message = (
        "This booking uses the legacy payment model (immediate transfer). "
        "No escrow transfer is needed."
    )


class TourNotYetCompleted(PaymentPreconditionError):
    code = "tour_not_completed"
    default_message = "Tour must be marked as completed before transferring funds to the guide."


class AlreadySettled(PaymentPreconditionError):
    code = "already_settled"
    http_status = status.HTTP_409_CONFLICT
    default_message = "Transfer already completed."


class PaymentNotConfirmed(PaymentPreconditionError):
    code = "payment_not_confirmed"
    default_message = "Payment must have succeeded before transferring to the guide."


class TransferFailed(Exception):
    """Stripe refused the escrow transfer; the booking is marked failed for operators."""

    code = "transfer_failed"

    def __init__(self, message: str, *, booking_id: int):
        self.booking_id = booking_id
        super().__init__(message)
