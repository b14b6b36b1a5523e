"""Typed application errors and their HTTP mapping."""

from __future__ import annotations

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base error carrying a stable code, an HTTP status and extra context."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        payload.update(self.context)
        return payload


class NotFound(AppError):
    code = "NOT_FOUND"
    status_code = 404


class InsufficientCredits(AppError):
    """Raised when a consumption would take the balance below zero."""

    code = "INSUFFICIENT_CREDITS"
    status_code = 402

    def __init__(self, credits: int):
        super().__init__(
            "Insufficient credits. Purchase credits to continue.",
            context={"credits": int(credits)},
        )
        self.credits = int(credits)


class InvalidAmount(AppError):
    code = "INVALID_AMOUNT"


class InvalidReason(AppError):
    code = "INVALID_REASON"


class InvalidPlan(AppError):
    code = "INVALID_PLAN"


class WebhookVerificationFailed(AppError):
    code = "WEBHOOK_VERIFICATION_FAILED"
    status_code = 400


class UpstreamGenerationError(AppError):
    code = "GENERATION_FAILED"
    status_code = 502


class UpstreamQuotaExceeded(AppError):
    code = "quota_exceeded"
    status_code = 503

    def __init__(self, message: str = "AI service quota exceeded. Please try again later."):
        super().__init__(message, context={"type": "quota_exceeded"})


class DailyLimitReached(AppError):
    code = "DAILY_LIMIT"
    status_code = 429

    def __init__(self, limit: int, is_pro: bool):
        super().__init__(
            f"Daily generation limit of {limit} reached.",
            context={"limit": int(limit), "isPro": bool(is_pro)},
        )


class PaymentProviderError(AppError):
    code = "PAYMENT_PROVIDER_ERROR"
    status_code = 502


class ProviderNotConfigured(AppError):
    code = "PROVIDER_NOT_CONFIGURED"
    status_code = 503
