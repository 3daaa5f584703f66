from django.contrib import admin
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView

from accounts.api import LoginView, MeView, RegisterView
from bookings.api import BookingViewSet
from guides.api import (
    GuideFeeSettingsView,
    StripeAccountStatusView,
    StripeDisconnectView,
    StripeOnboardingLinkView,
)
from payments.api import (
    FinalPaymentSweepView,
    SettlementSweepView,
    StripeWebhookView,
    WebhookQueueSweepView,
)

router = DefaultRouter()
router.register(r"bookings", BookingViewSet, basename="booking")

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/register/", RegisterView.as_view(), name="auth-register"),
    path("api/auth/login/", LoginView.as_view(), name="auth-login"),
    path("api/auth/refresh/", TokenRefreshView.as_view(), name="auth-refresh"),
    path("api/auth/me/", MeView.as_view(), name="auth-me"),
    path("api/guides/me/fees/", GuideFeeSettingsView.as_view(), name="guide-fees"),
    path(
        "api/guides/me/stripe/link/",
        StripeOnboardingLinkView.as_view(),
        name="guide-stripe-link",
    ),
    path(
        "api/guides/me/stripe/status/",
        StripeAccountStatusView.as_view(),
        name="guide-stripe-status",
    ),
    path(
        "api/guides/me/stripe/disconnect/",
        StripeDisconnectView.as_view(),
        name="guide-stripe-disconnect",
    ),
    path(
        "api/payments/sweeps/final-payments/",
        FinalPaymentSweepView.as_view(),
        name="sweep-final-payments",
    ),
    path(
        "api/payments/sweeps/settlements/",
        SettlementSweepView.as_view(),
        name="sweep-settlements",
    ),
    path(
        "api/payments/sweeps/webhook-queue/",
        WebhookQueueSweepView.as_view(),
        name="sweep-webhook-queue",
    ),
    path("api/webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
    path("api/", include(router.urls)),
]
