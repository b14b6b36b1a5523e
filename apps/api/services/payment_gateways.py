"""
Payment gateway integrations.

Handles:
- Stripe Checkout sessions (one-off credit and monthly Pro subscription)
- Stripe webhook signature verification and event translation
- PayPal orders (create, verify, capture)
- TeleBirr and CBE regional gateways (hash-signed requests and callbacks)

Every verified notification is reduced to a provider-neutral ``BillingEvent``
for the reconciler; nothing here touches the ledger.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import stripe

from config import paypal_base_url, settings
from services.errors import PaymentProviderError, ProviderNotConfigured, WebhookVerificationFailed
from services.reconciler import (
    CHECKOUT_COMPLETED,
    PURCHASE_ONE_OFF,
    PURCHASE_SUBSCRIPTION,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_RENEWED,
    BillingEvent,
)

logger = logging.getLogger(__name__)

GATEWAY_STRIPE = "stripe"
GATEWAY_PAYPAL = "paypal"
GATEWAY_TELEBIRR = "telebirr"
GATEWAY_CBE = "cbe"
GATEWAYS = (GATEWAY_STRIPE, GATEWAY_PAYPAL, GATEWAY_TELEBIRR, GATEWAY_CBE)
REDIRECT_GATEWAYS = (GATEWAY_PAYPAL, GATEWAY_TELEBIRR, GATEWAY_CBE)

HTTP_TIMEOUT_SECONDS = 20.0


@dataclass
class PaymentInitiation:
    gateway: str
    order_id: str
    payment_url: str
    provider_reference: Optional[str] = None


@dataclass
class CallbackResult:
    success: bool
    order_id: Optional[str]
    transaction_id: Optional[str] = None
    amount: Optional[float] = None
    error: Optional[str] = None


def price_for(purchase_type: str) -> int:
    if purchase_type == PURCHASE_SUBSCRIPTION:
        return int(settings.SUBSCRIPTION_PRICE_CENTS)
    return int(settings.ONE_OFF_PRICE_CENTS)


def credits_for(purchase_type: str) -> int:
    if purchase_type == PURCHASE_SUBSCRIPTION:
        return int(settings.SUBSCRIPTION_MONTHLY_CREDITS)
    return 1


def get_available_gateways() -> List[Dict[str, str]]:
    """List gateways whose credentials are configured."""
    gateways: List[Dict[str, str]] = []
    if settings.STRIPE_SECRET_KEY:
        gateways.append({
            "id": GATEWAY_STRIPE,
            "name": "Stripe",
            "description": "Credit/Debit Card (International)",
            "currency": "USD",
        })
    if settings.PAYPAL_CLIENT_ID and settings.PAYPAL_CLIENT_SECRET:
        gateways.append({
            "id": GATEWAY_PAYPAL,
            "name": "PayPal",
            "description": "Pay with PayPal Account",
            "currency": "USD",
        })
    if settings.TELEBIRR_APP_ID and settings.TELEBIRR_APP_KEY:
        gateways.append({
            "id": GATEWAY_TELEBIRR,
            "name": "TeleBirr",
            "description": "Mobile Money (Ethiopia)",
            "currency": "ETB",
        })
    if settings.CBE_MERCHANT_ID and settings.CBE_MERCHANT_KEY:
        gateways.append({
            "id": GATEWAY_CBE,
            "name": "CBE",
            "description": "Commercial Bank of Ethiopia",
            "currency": "ETB",
        })
    return gateways


def _success_url(gateway: Optional[str] = None, order_id: Optional[str] = None) -> str:
    base = settings.FRONTEND_URL.rstrip("/")
    if gateway is None:
        return f"{base}/payment-success?session_id={{CHECKOUT_SESSION_ID}}"
    return f"{base}/payment-success?gateway={gateway}&order_id={order_id}"


def _cancel_url() -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/payment-cancel"


def _json_body(response: httpx.Response, gateway: str) -> Dict[str, Any]:
    """Decode a provider response; an empty body is an empty dict."""
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError as exc:
        logger.error("%s returned a non-JSON response (HTTP %s)", gateway, response.status_code)
        raise PaymentProviderError(f"Unreadable response from {gateway}") from exc
    if not isinstance(data, dict):
        raise PaymentProviderError(f"Unexpected response from {gateway}")
    return data


def _to_etb(amount_cents: int, currency: str) -> int:
    """Whole-birr amount for ETB-only gateways."""
    if currency.upper() == "ETB":
        return int(round(amount_cents / 100))
    return int(round(amount_cents / 100 * float(settings.USD_TO_ETB_RATE)))


# =============================================================================
# Stripe
# =============================================================================


def _get_stripe():
    """Get configured Stripe module."""
    if not settings.STRIPE_SECRET_KEY:
        raise ProviderNotConfigured("Stripe is not configured.")
    stripe.api_key = settings.STRIPE_SECRET_KEY
    return stripe


def _stripe_session_params(user_id: str, purchase_type: str, customer_email: Optional[str]) -> Dict[str, Any]:
    credits = credits_for(purchase_type)
    metadata = {"user_id": user_id, "type": purchase_type, "credits": str(credits)}
    is_subscription = purchase_type == PURCHASE_SUBSCRIPTION
    price_data: Dict[str, Any] = {
        "currency": "usd",
        "product_data": {
            "name": "Pro Subscription - FantaBuild" if is_subscription else "1 Credit - FantaBuild",
            "description": (
                f"Pro subscription with {credits} credits per month"
                if is_subscription
                else "1 credit for downloading generated content"
            ),
        },
        "unit_amount": price_for(purchase_type),
    }
    if is_subscription:
        price_data["recurring"] = {"interval": "month"}

    params: Dict[str, Any] = {
        "payment_method_types": ["card"],
        "line_items": [{"price_data": price_data, "quantity": 1}],
        "mode": "subscription" if is_subscription else "payment",
        "success_url": _success_url(),
        "cancel_url": _cancel_url(),
        "client_reference_id": user_id,
        "metadata": metadata,
    }
    if is_subscription:
        # Renewal invoices only carry the subscription's own metadata.
        params["subscription_data"] = {"metadata": metadata}
    if customer_email:
        params["customer_email"] = customer_email
    return params


async def create_stripe_checkout(
    user_id: str,
    purchase_type: str,
    customer_email: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a Stripe Checkout session and return its id and redirect URL."""
    client = _get_stripe()
    params = _stripe_session_params(user_id, purchase_type, customer_email)
    try:
        session = await asyncio.to_thread(client.checkout.Session.create, **params)
    except stripe.StripeError as exc:
        logger.error("Stripe checkout creation failed for %s: %s", user_id, exc)
        raise PaymentProviderError("Failed to create checkout session") from exc

    logger.info("Created Stripe %s checkout %s for user %s", purchase_type, session.id, user_id)
    return {"session_id": session.id, "url": session.url, "amount_cents": price_for(purchase_type)}


async def get_stripe_session_paid(session_id: str) -> bool:
    if not settings.STRIPE_SECRET_KEY:
        return False
    client = _get_stripe()
    try:
        session = await asyncio.to_thread(client.checkout.Session.retrieve, session_id)
    except stripe.StripeError as exc:
        logger.warning("Stripe session lookup failed for %s: %s", session_id, exc)
        return False
    return session.payment_status == "paid" or session.status == "complete"


def verify_stripe_webhook(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """Verify Stripe webhook signature and return the event as a plain dict."""
    webhook_secret = settings.STRIPE_WEBHOOK_SECRET
    if not webhook_secret:
        raise ProviderNotConfigured("Stripe webhook secret is not configured.")
    if not signature:
        raise WebhookVerificationFailed("Missing Stripe-Signature header")

    try:
        stripe.Webhook.construct_event(payload, signature, webhook_secret)
    except stripe.SignatureVerificationError as exc:
        raise WebhookVerificationFailed(f"Invalid Stripe signature: {exc}") from exc
    except ValueError as exc:
        raise WebhookVerificationFailed(f"Invalid Stripe payload: {exc}") from exc

    return json.loads(payload)


def _metadata_user_id(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    if not metadata:
        return None
    return metadata.get("user_id") or metadata.get("userId")


def _invoice_user_id(invoice: Dict[str, Any]) -> Optional[str]:
    user_id = _metadata_user_id((invoice.get("subscription_details") or {}).get("metadata"))
    if user_id:
        return user_id
    parent = (invoice.get("parent") or {}).get("subscription_details") or {}
    user_id = _metadata_user_id(parent.get("metadata"))
    if user_id:
        return user_id
    for line in (invoice.get("lines") or {}).get("data") or []:
        user_id = _metadata_user_id(line.get("metadata"))
        if user_id:
            return user_id
    return None


def stripe_event_to_billing_event(event: Dict[str, Any]) -> Optional[BillingEvent]:
    """Map a verified Stripe event onto the billing vocabulary; None if irrelevant."""
    event_id = str(event.get("id") or "")
    event_type = event.get("type", "")
    data = (event.get("data") or {}).get("object") or {}
    if not event_id:
        raise WebhookVerificationFailed("Stripe event missing id")

    if event_type == "checkout.session.completed":
        metadata = data.get("metadata") or {}
        user_id = _metadata_user_id(metadata) or data.get("client_reference_id")
        purchase_type = metadata.get("type")
        if not user_id or purchase_type not in (PURCHASE_ONE_OFF, PURCHASE_SUBSCRIPTION):
            logger.error("Missing metadata in checkout session: %s", data.get("id"))
            return None
        if purchase_type == PURCHASE_ONE_OFF and data.get("payment_status") not in (None, "paid"):
            logger.info("Checkout %s completed without payment; waiting", data.get("id"))
            return None
        return BillingEvent(
            event_id=f"{GATEWAY_STRIPE}:{event_id}",
            provider=GATEWAY_STRIPE,
            kind=CHECKOUT_COMPLETED,
            user_id=user_id,
            purchase_type=purchase_type,
            order_id=data.get("id"),
            transaction_id=data.get("payment_intent") or data.get("subscription"),
        )

    if event_type == "invoice.payment_succeeded":
        if data.get("billing_reason") != "subscription_cycle":
            return None
        user_id = _invoice_user_id(data)
        if not user_id:
            logger.error("Renewal invoice %s carries no user_id metadata", data.get("id"))
            return None
        return BillingEvent(
            event_id=f"{GATEWAY_STRIPE}:{event_id}",
            provider=GATEWAY_STRIPE,
            kind=SUBSCRIPTION_RENEWED,
            user_id=user_id,
            purchase_type=PURCHASE_SUBSCRIPTION,
            transaction_id=data.get("id"),
        )

    if event_type == "customer.subscription.deleted":
        user_id = _metadata_user_id(data.get("metadata"))
        if not user_id:
            logger.error("Cancelled subscription %s carries no user_id metadata", data.get("id"))
            return None
        return BillingEvent(
            event_id=f"{GATEWAY_STRIPE}:{event_id}",
            provider=GATEWAY_STRIPE,
            kind=SUBSCRIPTION_CANCELLED,
            user_id=user_id,
        )

    logger.debug("Unhandled Stripe event type: %s", event_type)
    return None


# =============================================================================
# PayPal
# =============================================================================


async def _paypal_access_token(client: httpx.AsyncClient) -> str:
    if not settings.PAYPAL_CLIENT_ID or not settings.PAYPAL_CLIENT_SECRET:
        raise ProviderNotConfigured("PayPal API credentials not configured")
    response = await client.post(
        f"{paypal_base_url()}/v1/oauth2/token",
        auth=(settings.PAYPAL_CLIENT_ID, settings.PAYPAL_CLIENT_SECRET),
        headers={"Accept": "application/json", "Accept-Language": "en_US"},
        data={"grant_type": "client_credentials"},
    )
    if response.status_code >= 400:
        raise PaymentProviderError("Failed to get PayPal access token")
    access_token = _json_body(response, GATEWAY_PAYPAL).get("access_token")
    if not access_token:
        raise PaymentProviderError("PayPal token response missing access_token")
    return access_token


async def _init_paypal(client: httpx.AsyncClient, amount_cents: int, currency: str, order_id: str) -> PaymentInitiation:
    access_token = await _paypal_access_token(client)
    order_payload = {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "reference_id": order_id,
                "description": "FantaBuild Purchase",
                "amount": {"currency_code": currency or "USD", "value": f"{amount_cents / 100:.2f}"},
            }
        ],
        "application_context": {
            "brand_name": "FantaBuild",
            "landing_page": "NO_PREFERENCE",
            "user_action": "PAY_NOW",
            "return_url": _success_url(GATEWAY_PAYPAL, order_id),
            "cancel_url": _cancel_url(),
        },
    }
    response = await client.post(
        f"{paypal_base_url()}/v2/checkout/orders",
        json=order_payload,
        headers={"Authorization": f"Bearer {access_token}", "PayPal-Request-Id": order_id},
    )
    if response.status_code >= 400:
        detail = _json_body(response, GATEWAY_PAYPAL).get("message")
        raise PaymentProviderError(detail or "Failed to create PayPal order")

    data = _json_body(response, GATEWAY_PAYPAL)
    approval = next((link for link in data.get("links", []) if link.get("rel") == "approve"), None)
    if not approval or not approval.get("href"):
        raise PaymentProviderError("PayPal approval URL not found")
    return PaymentInitiation(
        gateway=GATEWAY_PAYPAL,
        order_id=order_id,
        payment_url=approval["href"],
        provider_reference=data.get("id"),
    )


def _paypal_result(order: Dict[str, Any], fallback_id: str) -> CallbackResult:
    unit = (order.get("purchase_units") or [{}])[0]
    payments = unit.get("payments") or {}
    capture = (payments.get("captures") or payments.get("authorizations") or [{}])[0]
    return CallbackResult(
        success=True,
        order_id=unit.get("reference_id"),
        transaction_id=capture.get("id") or fallback_id,
        amount=float((unit.get("amount") or {}).get("value") or 0),
    )


async def _verify_paypal(client: httpx.AsyncClient, data: Dict[str, Any]) -> CallbackResult:
    paypal_order_id = data.get("orderID") or data.get("order_id") or data.get("token")
    if not paypal_order_id:
        raise WebhookVerificationFailed("PayPal callback missing order id")

    access_token = await _paypal_access_token(client)
    headers = {"Authorization": f"Bearer {access_token}"}
    response = await client.get(f"{paypal_base_url()}/v2/checkout/orders/{paypal_order_id}", headers=headers)
    if response.status_code >= 400:
        raise WebhookVerificationFailed("Failed to verify PayPal order")
    order = _json_body(response, GATEWAY_PAYPAL)

    if order.get("status") == "APPROVED":
        capture = await client.post(
            f"{paypal_base_url()}/v2/checkout/orders/{paypal_order_id}/capture",
            headers=headers,
        )
        if capture.status_code >= 400:
            return CallbackResult(success=False, order_id=None, error="Failed to capture PayPal order")
        return _paypal_result(_json_body(capture, GATEWAY_PAYPAL), paypal_order_id)

    if order.get("status") == "COMPLETED":
        return _paypal_result(order, paypal_order_id)

    return CallbackResult(success=False, order_id=None, error=f"Order status: {order.get('status')}")


# =============================================================================
# TeleBirr
# =============================================================================


def telebirr_signature(params: Dict[str, Any]) -> str:
    """SHA-256 over the sorted ``key=value`` pairs plus the app key."""
    signed = {k: v for k, v in params.items() if k not in ("sign", "hash") and v is not None}
    signed["appKey"] = settings.TELEBIRR_APP_KEY
    canonical = "&".join(f"{key}={signed[key]}" for key in sorted(signed))
    return hashlib.sha256(canonical.encode()).hexdigest()


async def _init_telebirr(client: httpx.AsyncClient, amount_cents: int, currency: str, order_id: str) -> PaymentInitiation:
    if not settings.TELEBIRR_APP_ID or not settings.TELEBIRR_APP_KEY:
        raise ProviderNotConfigured("TeleBirr API credentials not configured")

    params = {
        "appId": settings.TELEBIRR_APP_ID,
        "shortCode": settings.TELEBIRR_SHORT_CODE,
        "outTradeNo": order_id,
        "subject": "FantaBuild Purchase",
        "totalAmount": str(_to_etb(amount_cents, currency)),
        "notifyUrl": f"{settings.FRONTEND_URL.rstrip('/')}/api/payment/telebirr/callback",
        "returnUrl": _success_url(GATEWAY_TELEBIRR, order_id),
        "receiveName": "FantaBuild",
        "timeoutExpress": "30m",
    }
    payload = {"appid": settings.TELEBIRR_APP_ID, "data": json.dumps(params), "hash": telebirr_signature(params)}
    response = await client.post(f"{settings.TELEBIRR_API_URL.rstrip('/')}/api/payment/create", json=payload)
    data = _json_body(response, GATEWAY_TELEBIRR)
    if data.get("code") == "0000" and data.get("toPayURL"):
        return PaymentInitiation(gateway=GATEWAY_TELEBIRR, order_id=order_id, payment_url=data["toPayURL"])
    raise PaymentProviderError(data.get("message") or "Failed to create TeleBirr payment")


def _verify_telebirr(data: Dict[str, Any]) -> CallbackResult:
    if not settings.TELEBIRR_APP_KEY:
        raise ProviderNotConfigured("TeleBirr API credentials not configured")
    provided = str(data.get("sign") or "")
    if not provided or not hmac.compare_digest(provided, telebirr_signature(data)):
        raise WebhookVerificationFailed("Invalid TeleBirr signature")
    return CallbackResult(
        success=str(data.get("status") or "").upper() == "SUCCESS",
        order_id=data.get("outTradeNo"),
        transaction_id=data.get("transactionNo"),
        amount=float(data.get("totalAmount") or 0),
    )


# =============================================================================
# CBE
# =============================================================================


def cbe_signature(merchant_id: str, order_id: str, amount: Any) -> str:
    return hashlib.sha256(f"{merchant_id}{order_id}{amount}{settings.CBE_MERCHANT_KEY}".encode()).hexdigest()


async def _init_cbe(
    client: httpx.AsyncClient,
    amount_cents: int,
    currency: str,
    order_id: str,
    customer: Dict[str, Any],
) -> PaymentInitiation:
    if not settings.CBE_MERCHANT_ID or not settings.CBE_MERCHANT_KEY:
        raise ProviderNotConfigured("CBE payment credentials not configured")

    amount_etb = _to_etb(amount_cents, currency)
    params = {
        "merchantId": settings.CBE_MERCHANT_ID,
        "orderId": order_id,
        "amount": amount_etb,
        "currency": "ETB",
        "description": "FantaBuild Purchase",
        "customerEmail": customer.get("email") or "",
        "customerPhone": customer.get("phone") or "",
        "returnUrl": _success_url(GATEWAY_CBE, order_id),
        "notifyUrl": f"{settings.FRONTEND_URL.rstrip('/')}/api/payment/cbe/callback",
        "signature": cbe_signature(settings.CBE_MERCHANT_ID, order_id, amount_etb),
    }
    response = await client.post(
        f"{settings.CBE_API_URL.rstrip('/')}/payment/initiate",
        json=params,
        headers={"Authorization": f"Bearer {settings.CBE_MERCHANT_KEY}"},
    )
    data = _json_body(response, GATEWAY_CBE)
    if data.get("status") == "success" and data.get("paymentUrl"):
        return PaymentInitiation(gateway=GATEWAY_CBE, order_id=order_id, payment_url=data["paymentUrl"])
    raise PaymentProviderError(data.get("message") or "Failed to create CBE payment")


def _verify_cbe(data: Dict[str, Any]) -> CallbackResult:
    if not settings.CBE_MERCHANT_ID or not settings.CBE_MERCHANT_KEY:
        raise ProviderNotConfigured("CBE payment credentials not configured")
    if str(data.get("merchantId") or "") != settings.CBE_MERCHANT_ID:
        raise WebhookVerificationFailed("CBE callback for unknown merchant")
    expected = cbe_signature(data.get("merchantId"), data.get("orderId"), data.get("amount"))
    if not hmac.compare_digest(str(data.get("signature") or ""), expected):
        raise WebhookVerificationFailed("Invalid CBE signature")
    return CallbackResult(
        success=str(data.get("status") or "").upper() == "SUCCESS",
        order_id=data.get("orderId"),
        transaction_id=data.get("transactionId"),
        amount=float(data.get("amount") or 0),
    )


# =============================================================================
# Dispatch
# =============================================================================


async def create_payment_session(
    gateway: str,
    amount_cents: int,
    currency: str,
    order_id: str,
    customer: Dict[str, Any],
    client: Optional[httpx.AsyncClient] = None,
) -> PaymentInitiation:
    """Start a redirect-based payment with a non-Stripe gateway."""
    if gateway == GATEWAY_STRIPE:
        raise ValueError("Use the Stripe checkout endpoints directly")
    if gateway not in REDIRECT_GATEWAYS:
        raise ValueError(f"Unsupported payment gateway: {gateway}")

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
    try:
        if gateway == GATEWAY_PAYPAL:
            return await _init_paypal(client, amount_cents, currency, order_id)
        if gateway == GATEWAY_TELEBIRR:
            return await _init_telebirr(client, amount_cents, currency, order_id)
        return await _init_cbe(client, amount_cents, currency, order_id, customer)
    except httpx.HTTPError as exc:
        logger.error("%s payment error: %s", gateway, exc)
        raise PaymentProviderError(f"{gateway} payment failed") from exc
    finally:
        if owns_client:
            await client.aclose()


async def verify_payment_callback(
    gateway: str,
    data: Dict[str, Any],
    client: Optional[httpx.AsyncClient] = None,
) -> CallbackResult:
    """Authenticate a gateway callback. Raises ``WebhookVerificationFailed`` on forgery."""
    if gateway == GATEWAY_TELEBIRR:
        return _verify_telebirr(data)
    if gateway == GATEWAY_CBE:
        return _verify_cbe(data)
    if gateway != GATEWAY_PAYPAL:
        raise ValueError(f"Unsupported payment gateway: {gateway}")

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
    try:
        return await _verify_paypal(client, data)
    except httpx.HTTPError as exc:
        logger.error("PayPal callback verification error: %s", exc)
        raise PaymentProviderError("PayPal verification failed") from exc
    finally:
        if owns_client:
            await client.aclose()
