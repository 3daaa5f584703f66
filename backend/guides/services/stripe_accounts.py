from __future__ import annotations

import logging

from django.utils import timezone

from guides.models import GuideProfile, GuideStripeAccount
from payments.services.stripe_gateway import read

logger = logging.getLogger(__name__)

REQUIREMENT_LIST_FIELDS = ("currently_due", "eventually_due", "past_due", "pending_verification", "errors")


def determine_kyc_status(stripe_account) -> str:
    requirements = read(stripe_account, "requirements")
    if read(requirements, "disabled_reason"):
        return GuideStripeAccount.KYC_FAILED
    if read(stripe_account, "payouts_enabled") and read(stripe_account, "charges_enabled"):
        return GuideStripeAccount.KYC_VERIFIED
    if read(requirements, "currently_due"):
        return GuideStripeAccount.KYC_INCOMPLETE
    if read(requirements, "pending_verification"):
        return GuideStripeAccount.KYC_PENDING
    return GuideStripeAccount.KYC_INCOMPLETE


def requirements_snapshot(stripe_account) -> dict:
    requirements = read(stripe_account, "requirements")
    if requirements is None:
        return {}
    snapshot = {name: list(read(requirements, name, [])) for name in REQUIREMENT_LIST_FIELDS}
    snapshot["disabled_reason"] = read(requirements, "disabled_reason")
    snapshot["current_deadline"] = read(requirements, "current_deadline")
    return snapshot


def bank_account_last4(stripe_account) -> str:
    external_accounts = read(stripe_account, "external_accounts")
    data = read(external_accounts, "data", [])
    if not data:
        return ""
    first = data[0]
    if read(first, "object") != "bank_account":
        return ""
    return read(first, "last4", "")


def sync_account_from_stripe(local_account: GuideStripeAccount, stripe_account) -> list[str]:
    """Copy the provider's view of the account onto the local row; returns the changed fields."""
    changed_fields: list[str] = []
    field_mapping = {
        "livemode": "livemode",
        "charges_enabled": "charges_enabled",
        "payouts_enabled": "payouts_enabled",
        "details_submitted": "details_submitted",
    }
    for field, attr in field_mapping.items():
        value = bool(read(stripe_account, attr, False))
        if getattr(local_account, field) != value:
            setattr(local_account, field, value)
            changed_fields.append(field)

    text_values = {
        "default_currency": read(stripe_account, "default_currency", ""),
        "account_email": read(stripe_account, "email", ""),
        "kyc_status": determine_kyc_status(stripe_account),
    }
    for field, value in text_values.items():
        if getattr(local_account, field) != value:
            setattr(local_account, field, value)
            changed_fields.append(field)

    requirements = requirements_snapshot(stripe_account)
    if requirements and local_account.requirements != requirements:
        local_account.requirements = requirements
        changed_fields.append("requirements")

    last4 = bank_account_last4(stripe_account)
    if last4 and local_account.bank_account_last4 != last4:
        local_account.bank_account_last4 = last4
        changed_fields.append("bank_account_last4")

    if changed_fields:
        changed_fields.append("updated_at")
        local_account.save(update_fields=changed_fields)
        logger.info(
            "Synced Stripe account %s (%s)",
            local_account.account_id,
            ", ".join(changed_fields[:-1]),
        )
    return changed_fields


def record_webhook_received(account_id: str, *, error: str = "") -> None:
    now = timezone.now()
    updates = {"last_webhook_received_at": now}
    if error:
        updates["last_webhook_error_at"] = now
        updates["last_webhook_error_message"] = error[:500]
    GuideStripeAccount.objects.filter(account_id=account_id).update(**updates)


def find_account(account_id: str) -> GuideStripeAccount | None:
    account = GuideStripeAccount.objects.select_related("guide").filter(account_id=account_id).first()
    if account is None and account_id:
        guide = GuideProfile.objects.filter(stripe_account_id=account_id).first()
        if guide is not None:
            account = GuideStripeAccount.objects.create(guide=guide, account_id=account_id)
    return account
