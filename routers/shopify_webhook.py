# routers/shopify_webhook.py

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.commission_service import CommissionService
from app.config import settings
from app.deps import get_commission_service
from app.errors import InvalidPayloadError, OperationInProgressError
from app.notification_service import send_slack_commission_notification
from schemas.shopify import ShopifyCheckoutPayload, ShopifyOrderPayload, ShopifyRefundPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def verify_shopify_hmac(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Base64 HMAC-SHA256 of the raw body, compared in constant time."""
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, signature.strip())


def _dispatch(
    service: CommissionService,
    topic: Optional[str],
    body: dict,
    request_id: str,
    background_tasks: BackgroundTasks,
) -> None:
    if topic in ("orders/create", "orders/updated"):
        service.handle_order_event(ShopifyOrderPayload.model_validate(body), request_id)

    elif topic == "orders/paid":
        result = service.handle_order_paid(ShopifyOrderPayload.model_validate(body), request_id)
        # Only the first successful delivery announces the commission
        if result.get("commission_id") and not result.get("replayed") and settings.slack_webhook_url:
            background_tasks.add_task(
                send_slack_commission_notification,
                settings.slack_webhook_url,
                order_number=result.get("order_number"),
                order_total=result.get("order_total"),
                commission_amount=result.get("commission_amount"),
                attribution_source=result.get("attribution_source"),
                attribution_priority=result.get("attribution_priority") or 0,
                request_id=request_id,
            )

    elif topic == "orders/cancelled":
        service.handle_order_cancelled(ShopifyOrderPayload.model_validate(body), request_id)

    elif topic == "refunds/create":
        service.handle_refund(ShopifyRefundPayload.model_validate(body), request_id)

    elif topic in ("checkouts/create", "checkouts/update"):
        service.handle_checkout(ShopifyCheckoutPayload.model_validate(body), request_id)

    else:
        logger.info("WEBHOOK: unhandled topic=%s request_id=%s", topic, request_id)


@router.post("/shopify")
async def shopify_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    service: CommissionService = Depends(get_commission_service),
):
    """
    Shopify webhook endpoint (at-least-once delivery).
    - 401 bad / missing signature (when a secret is configured), no side effects
    - 400 unreadable payload, no idempotency record
    - 503 same event already in flight: Shopify redelivers later
    - 500 unexpected error: Shopify redelivers, the idempotency gate absorbs it
    Callers never see business detail (attribution, amounts).
    """
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    raw_body = await request.body()
    topic = request.headers.get("x-shopify-topic")

    secret = settings.shopify_webhook_secret
    if secret and not verify_shopify_hmac(raw_body, request.headers.get("x-shopify-hmac-sha256"), secret):
        logger.warning("WEBHOOK: invalid Shopify signature topic=%s request_id=%s", topic, request_id)
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    try:
        body = json.loads(raw_body)
        if not isinstance(body, dict):
            raise ValueError("payload is not a JSON object")
    except ValueError:
        logger.warning("WEBHOOK: unreadable body topic=%s request_id=%s", topic, request_id)
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    logger.info(
        "WEBHOOK: received topic=%s shop=%s id=%s request_id=%s",
        topic,
        request.headers.get("x-shopify-shop-domain"),
        body.get("id"),
        request_id,
    )

    try:
        _dispatch(service, topic, body, request_id, background_tasks)
    except (ValidationError, InvalidPayloadError) as e:
        logger.warning("WEBHOOK: invalid payload topic=%s request_id=%s: %s", topic, request_id, e)
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})
    except OperationInProgressError:
        # Nothing failed: another worker holds the key. Shopify redelivers any
        # 5xx, and 503 keeps this out of the 500 error logs and alerts.
        logger.info("WEBHOOK: duplicate delivery in flight topic=%s request_id=%s", topic, request_id)
        return JSONResponse(status_code=503, content={"error": "Retry later"})
    except Exception:
        logger.exception("WEBHOOK: processing FAILED topic=%s request_id=%s", topic, request_id)
        return JSONResponse(status_code=500, content={"error": "Internal error"})

    return {"success": True, "request_id": request_id}
