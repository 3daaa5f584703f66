import logging

import stripe
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.models import Booking
from bookings.serializers import BookingRequestSerializer, BookingSerializer
from bookings.services.notifications import notify_hiker
from payments.api import payment_error_response
from payments.exceptions import BookingNotFound, PaymentPreconditionError, TransferFailed
from payments.services.checkout import (
    build_quote,
    create_upfront_charge,
    current_fee_policy,
    ensure_balance_chargeable,
    ensure_deposit_allowed,
)
from payments.services.escrow import settle_completed_booking
from tours.models import TourDateSlot

logger = logging.getLogger(__name__)


class BookingViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "payment_status", "final_payment_status", "transfer_status", "payment_type"]
    search_fields = ["reference", "tour__title"]
    ordering_fields = ["created_at", "final_payment_due_date"]

    def get_queryset(self):
        queryset = Booking.objects.select_related("tour", "tour__guide", "date_slot", "hiker")
        user = self.request.user
        if user.is_staff:
            return queryset
        return queryset.filter(Q(hiker=user) | Q(tour__guide__user=user))

    def get_serializer_class(self):
        if self.action in {"create", "quote"}:
            return BookingRequestSerializer
        return super().get_serializer_class()

    def _quote(self, data: dict):
        tour = data["tour"]
        return build_quote(
            subtotal_cents=data["subtotal_cents"],
            discount_cents=data["discount_cents"],
            fee_policy=current_fee_policy(tour.guide),
            is_deposit=data["payment_type"] == Booking.PAYMENT_DEPOSIT,
            guide=tour.guide,
        )

    @action(detail=False, methods=["post"], url_path="quote")
    def quote(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            if serializer.is_deposit:
                ensure_deposit_allowed(data["tour"].guide, data["date_slot"], timezone.localdate())
            quote = self._quote(data)
            ensure_balance_chargeable(quote)
        except PaymentPreconditionError as exc:
            return payment_error_response(exc)
        return Response(quote.as_dict())

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        tour = data["tour"]

        try:
            with transaction.atomic():
                slot = TourDateSlot.objects.select_for_update().get(pk=data["date_slot"].pk)
                if data["participants"] > slot.spots_available:
                    return Response(
                        {"participants": [f"Only {slot.spots_available} spot(s) left on this date."]},
                        status=status.HTTP_400_BAD_REQUEST,
                    )
                booking = Booking.objects.create(
                    hiker=request.user,
                    tour=tour,
                    date_slot=slot,
                    participants=data["participants"],
                    subtotal_cents=data["subtotal_cents"],
                    discount_cents=data["discount_cents"],
                    currency=tour.currency,
                    payment_type=data["payment_type"],
                )
                TourDateSlot.objects.filter(pk=slot.pk).update(spots_booked=F("spots_booked") + data["participants"])
                result = create_upfront_charge(
                    booking,
                    tour.guide,
                    slot,
                    serializer.is_deposit,
                    self._quote(data),
                )
        except (PaymentPreconditionError, stripe.error.StripeError, RuntimeError) as exc:
            if isinstance(exc, stripe.error.StripeError):
                logger.exception("Failed to create checkout session: %s", exc)
            return payment_error_response(exc)

        if result.url:
            notify_hiker(booking, "booking_payment_link", payment_url=result.url)

        payload = BookingSerializer(booking).data
        payload["checkout_url"] = result.url
        payload["checkout_session_id"] = result.session_id
        payload["quote"] = result.quote.as_dict()
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="settle", permission_classes=[permissions.IsAdminUser])
    def settle(self, request, pk=None):
        try:
            if not str(pk).isdigit():
                raise BookingNotFound(booking_id=pk)
            result = settle_completed_booking(int(pk))
        except (PaymentPreconditionError, TransferFailed, stripe.error.StripeError, RuntimeError) as exc:
            return payment_error_response(exc)
        return Response(result.as_dict(), status=status.HTTP_200_OK)
