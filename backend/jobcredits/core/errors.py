from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


logger = logging.getLogger(__name__)


class CreditsError(Exception):
    """Base for caller-facing outcomes of the credit subsystem.

    These are recoverable business results, not process failures. Each one
    carries the HTTP status it maps to and a stable machine-readable code.
    """

    status_code = 400
    code = "credits_error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)

    def to_payload(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class InvalidSelection(CreditsError):
    """Unknown or inactive pack, add-on or upsell selection"""

    status_code = 400
    code = "invalid_selection"


class InvalidJobDraft(CreditsError):
    """The job listing is missing required content"""

    status_code = 400
    code = "invalid_job_draft"


class SubscriptionRequired(CreditsError):
    """An active subscription is required for this purchase"""

    status_code = 403
    code = "subscription_required"

    def __init__(self, detail: str | None = None, redirect_url: str | None = None) -> None:
        super().__init__(detail)
        self.redirect_url = redirect_url

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.redirect_url:
            payload["redirect_url"] = self.redirect_url
        return payload


class OwnershipMismatch(CreditsError):
    """The target does not belong to the caller"""

    status_code = 403
    code = "ownership_mismatch"


class JobNotFound(CreditsError):
    """Job not found"""

    status_code = 404
    code = "job_not_found"


class InsufficientCredits(CreditsError):
    """Job posting credits required"""

    status_code = 402
    code = "insufficient_credits"

    def __init__(self, detail: str | None = None, credit_type: str | None = None) -> None:
        super().__init__(detail)
        self.credit_type = credit_type

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.credit_type:
            payload["credit_type"] = self.credit_type
        return payload


class JobStillActive(CreditsError):
    """The job is still active and has not expired"""

    status_code = 409
    code = "job_still_active"


class JobNotActive(CreditsError):
    """Only active jobs can be featured"""

    status_code = 409
    code = "job_not_active"


class AddonAlreadyApplied(CreditsError):
    """This add-on has already been applied to the job"""

    status_code = 409
    code = "addon_already_applied"


class GrantUnavailable(CreditsError):
    """The add-on grant is inactive, expired or missing"""

    status_code = 409
    code = "grant_unavailable"


class UnknownPurchase(CreditsError):
    """No purchase matches the checkout session"""

    status_code = 404
    code = "unknown_purchase"


class GatewayNotConfigured(CreditsError):
    """Payment gateway is not configured"""

    status_code = 500
    code = "gateway_not_configured"


class GatewayError(CreditsError):
    """Payment gateway request failed"""

    status_code = 502
    code = "gateway_error"


class WebhookSignatureError(CreditsError):
    """Invalid webhook signature"""

    status_code = 400
    code = "invalid_signature"


async def _credits_error_handler(request: Request, exc: CreditsError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("credits_error.%s path=%s detail=%s", exc.code, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CreditsError, _credits_error_handler)
