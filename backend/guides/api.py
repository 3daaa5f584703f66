import logging
from datetime import datetime, timezone

import stripe
from django.conf import settings
from django.http import Http404
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from payments.services.stripe_gateway import configure_stripe

from .models import GuideProfile, GuideStripeAccount
from .permissions import IsGuide
from .serializers import (
    GuideFeeSettingsSerializer,
    StripeAccountStatusSerializer,
    StripeOnboardingLinkSerializer,
)
from .services.stripe_accounts import sync_account_from_stripe

logger = logging.getLogger(__name__)


class GuideBaseView(APIView):
    permission_classes = [IsAuthenticated, IsGuide]

    def get_guide(self) -> GuideProfile:
        try:
            return self.request.user.guide_profile
        except GuideProfile.DoesNotExist:
            raise Http404("No guide profile for this user.")


class GuideStripeBaseView(GuideBaseView):
    def get_account(self, guide: GuideProfile) -> GuideStripeAccount | None:
        try:
            return guide.stripe_account  # type: ignore[attr-defined]
        except GuideStripeAccount.DoesNotExist:
            return None


class GuideFeeSettingsView(GuideBaseView):
    """Read or update the guide's fee overrides and deposit policy."""

    def get(self, request, *args, **kwargs):
        serializer = GuideFeeSettingsSerializer(self.get_guide())
        return Response(serializer.data)

    def patch(self, request, *args, **kwargs):
        guide = self.get_guide()
        serializer = GuideFeeSettingsSerializer(guide, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        logger.info("Guide %s updated fee settings: %s", guide.id, sorted(serializer.validated_data))
        return Response(GuideFeeSettingsSerializer(guide).data)


class StripeOnboardingLinkView(GuideStripeBaseView):
    """
    Create (or refresh) an onboarding link for the guide's Stripe Express account.
    """

    def post(self, request, *args, **kwargs):
        try:
            configure_stripe()
        except RuntimeError as exc:
            return Response(
                {"detail": str(exc)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )
        if not settings.STRIPE_CONNECT_RETURN_URL or not settings.STRIPE_CONNECT_REFRESH_URL:
            return Response(
                {
                    "detail": "Stripe connect return/refresh URLs are not configured. "
                    "Set STRIPE_CONNECT_RETURN_URL and STRIPE_CONNECT_REFRESH_URL."
                },
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        guide = self.get_guide()
        account = self.get_account(guide)
        try:
            if account is None:
                stripe_account = stripe.Account.create(
                    type="express",
                    email=guide.contact_email or None,
                    capabilities={
                        "card_payments": {"requested": True},
                        "transfers": {"requested": True},
                    },
                    metadata={"guide_id": str(guide.id)},
                )
                account = GuideStripeAccount.objects.create(
                    guide=guide,
                    account_id=stripe_account.id,
                )
                sync_account_from_stripe(account, stripe_account)
                guide.stripe_account_id = stripe_account.id
                guide.save(update_fields=["stripe_account_id", "updated_at"])
            else:
                stripe_account = stripe.Account.retrieve(account.account_id)
                sync_account_from_stripe(account, stripe_account)

            link = stripe.AccountLink.create(
                account=account.account_id,
                type="account_onboarding",
                refresh_url=settings.STRIPE_CONNECT_REFRESH_URL,
                return_url=settings.STRIPE_CONNECT_RETURN_URL,
            )

        except stripe.error.StripeError as exc:
            logger.exception("Failed to create Stripe onboarding link: %s", exc)
            return Response(
                {"detail": str(exc)},
                status=status.HTTP_502_BAD_GATEWAY,
            )

        expires_at = datetime.fromtimestamp(link.expires_at, tz=timezone.utc)
        account.onboarding_link_url = link.url
        account.onboarding_expires_at = expires_at
        account.save(update_fields=["onboarding_link_url", "onboarding_expires_at", "updated_at"])

        serializer = StripeOnboardingLinkSerializer(
            {"url": link.url, "expires_at": expires_at}
        )
        return Response(serializer.data, status=status.HTTP_201_CREATED)


class StripeAccountStatusView(GuideStripeBaseView):
    """Return the current connection status for the guide's Stripe account."""

    def get(self, request, *args, **kwargs):
        try:
            configure_stripe()
        except RuntimeError as exc:
            return Response(
                {"detail": str(exc)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )
        account = self.get_account(self.get_guide())
        if account:
            try:
                stripe_account = stripe.Account.retrieve(account.account_id)
                sync_account_from_stripe(account, stripe_account)
                try:
                    login_link = stripe.Account.create_login_link(account.account_id)
                    account.express_dashboard_url = login_link.url
                    account.save(update_fields=["express_dashboard_url", "updated_at"])
                except stripe.error.StripeError as exc:
                    logger.warning(
                        "Unable to create Stripe login link for account %s: %s",
                        account.account_id,
                        exc,
                    )
            except stripe.error.StripeError as exc:
                logger.exception("Failed to refresh Stripe account status: %s", exc)

        payload = StripeAccountStatusSerializer.from_account(account)
        return Response(payload)


class StripeDisconnectView(GuideStripeBaseView):
    """Disconnect the Stripe account and remove local credentials."""

    def post(self, request, *args, **kwargs):
        try:
            configure_stripe()
        except RuntimeError as exc:
            return Response(
                {"detail": str(exc)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )
        guide = self.get_guide()
        account = self.get_account(guide)
        if account is None:
            return Response(status=status.HTTP_204_NO_CONTENT)

        try:
            stripe.Account.delete(account.account_id)
        except stripe.error.StripeError as exc:
            logger.exception("Failed to disconnect Stripe account: %s", exc)
            return Response({"detail": str(exc)}, status=status.HTTP_502_BAD_GATEWAY)

        account.delete()
        guide.stripe_account_id = ""
        guide.save(update_fields=["stripe_account_id", "updated_at"])
        return Response(status=status.HTTP_204_NO_CONTENT)
