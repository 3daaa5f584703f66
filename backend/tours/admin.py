from django.contrib import admin

from .models import Tour, TourDateSlot


class TourDateSlotInline(admin.TabularInline):
    model = TourDateSlot
    extra = 0


@admin.register(Tour)
class TourAdmin(admin.ModelAdmin):
    list_display = ("title", "guide", "location", "price_per_person_cents", "currency", "is_active")
    list_filter = ("is_active", "currency")
    search_fields = ("title", "location", "guide__display_name")
    inlines = [TourDateSlotInline]
