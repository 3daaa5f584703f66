from django.utils import timezone
from rest_framework import serializers

from bookings.models import Booking
from payments.services.checkout import get_latest_payment_preview_url
from tours.models import Tour, TourDateSlot


class BookingRequestSerializer(serializers.Serializer):
    """Input shared by the quote and create endpoints."""

    tour = serializers.PrimaryKeyRelatedField(queryset=Tour.objects.filter(is_active=True))
    date_slot = serializers.PrimaryKeyRelatedField(queryset=TourDateSlot.objects.select_related("tour"))
    participants = serializers.IntegerField(min_value=1)
    payment_type = serializers.ChoiceField(choices=Booking.PAYMENT_TYPES, default=Booking.PAYMENT_FULL)
    discount_cents = serializers.IntegerField(min_value=0, default=0)

    def validate_discount_cents(self, value):
        request = self.context.get("request")
        if value and not (request and request.user.is_staff):
            raise serializers.ValidationError("Only staff can apply a discount.")
        return value

    def validate(self, attrs):
        tour: Tour = attrs["tour"]
        slot: TourDateSlot = attrs["date_slot"]
        participants = attrs["participants"]
        if slot.tour_id != tour.id:
            raise serializers.ValidationError({"date_slot": "This date does not belong to the selected tour."})
        if slot.slot_date <= timezone.localdate():
            raise serializers.ValidationError({"date_slot": "This date is no longer bookable."})
        if participants > tour.max_participants:
            raise serializers.ValidationError(
                {"participants": f"This tour takes at most {tour.max_participants} participants."}
            )
        if participants > slot.spots_available:
            raise serializers.ValidationError(
                {"participants": f"Only {slot.spots_available} spot(s) left on this date."}
            )
        subtotal = tour.subtotal_cents(participants)
        if attrs["discount_cents"] > subtotal:
            raise serializers.ValidationError({"discount_cents": "Discount cannot exceed the subtotal."})
        attrs["subtotal_cents"] = subtotal
        return attrs

    @property
    def is_deposit(self) -> bool:
        return self.validated_data["payment_type"] == Booking.PAYMENT_DEPOSIT


class BookingSerializer(serializers.ModelSerializer):
    tour_title = serializers.CharField(source="tour.title", read_only=True)
    tour_date = serializers.DateField(source="date_slot.slot_date", read_only=True)
    guide_id = serializers.IntegerField(source="tour.guide_id", read_only=True)
    hiker_email = serializers.EmailField(source="hiker.email", read_only=True)
    post_discount_cents = serializers.IntegerField(read_only=True)
    payment_preview_url = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = [
            "id",
            "reference",
            "tour",
            "tour_title",
            "tour_date",
            "date_slot",
            "guide_id",
            "hiker_email",
            "participants",
            "status",
            "subtotal_cents",
            "discount_cents",
            "post_discount_cents",
            "service_fee_cents",
            "total_price_cents",
            "currency",
            "guide_fee_percentage",
            "hiker_fee_percentage",
            "payment_type",
            "payment_status",
            "deposit_cents",
            "final_payment_cents",
            "final_payment_due_date",
            "final_payment_status",
            "final_payment_error",
            "final_payment_paid_at",
            "escrow_enabled",
            "transfer_status",
            "transfer_amount_cents",
            "transfer_created_at",
            "created_at",
            "payment_preview_url",
        ]
        read_only_fields = fields

    def get_payment_preview_url(self, obj: Booking):
        return get_latest_payment_preview_url(obj)
