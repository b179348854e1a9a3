"""Inbound webhook endpoints.

- ``POST /webhooks/catalog``: catalog product events, queued durably and
  applied to the local mirror.
- ``POST /webhooks/market``: market-price events, acknowledged immediately
  and applied to the remote catalog in the background.

Both verify an HMAC-SHA256 signature over the raw request body.
"""

from typing import Any

import orjson
import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation_service.composition import reconciliation_context
from reconciliation_service.config import get_settings
from reconciliation_service.exceptions import (
    EntityValidationError,
    SignatureVerificationError,
    UnsupportedTopicError,
)
from reconciliation_service.infrastructure.database.connection import get_db_session, get_session
from reconciliation_service.services.webhook_handler import WebhookProcessor
from reconciliation_service.services.webhook_security import require_valid_signature

router = APIRouter()
logger = structlog.get_logger()

MARKET_EVENTS = ("price_change", "out_of_stock")


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the webhook sender."""

    status: str
    queue_id: int | None = None
    processed: bool | None = None


# =============================================================================
# Helpers
# =============================================================================


def _header(request: Request, *names: str) -> str | None:
    for name in names:
        value = request.headers.get(name)
        if value:
            return value
    return None


def _decode_json(body: bytes) -> Any:
    if not body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty request body")
    try:
        return orjson.loads(body)
    except orjson.JSONDecodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON") from e


def unwrap_catalog_envelope(
    body: dict[str, Any], topic: str | None, delivery_id: str | None
) -> tuple[str | None, dict[str, Any], str | None]:
    """Accept either a raw catalog payload (topic in headers) or an envelope.

    An envelope is ``{topic, resource_id, payload, delivery_id?}``.
    """
    if "payload" in body and "topic" in body:
        payload = body.get("payload")
        if not isinstance(payload, dict):
            raise EntityValidationError("Envelope payload must be an object")
        payload = dict(payload)
        if body.get("resource_id") is not None:
            payload.setdefault("id", body["resource_id"])
        return body["topic"], payload, body.get("delivery_id") or delivery_id
    return topic, body, delivery_id


def parse_market_event(body: dict[str, Any]) -> tuple[str, str | None, list[dict[str, Any]]]:
    """``(event, sku, variants)`` from the loosely shaped market payload."""
    product = body.get("product") if isinstance(body.get("product"), dict) else {}
    event = body.get("event") or "price_change"
    sku = product.get("sku") or body.get("sku") or body.get("style_id")
    variants = body.get("variants") or product.get("variants") or body.get("sizes") or []
    return event, sku, variants if isinstance(variants, list) else []


def get_webhook_processor(session: AsyncSession = Depends(get_session)) -> WebhookProcessor:
    settings = get_settings()
    return WebhookProcessor(
        session,
        max_attempts=settings.webhook_max_attempts,
        create_from_remote=settings.webhook_create_from_remote,
    )


async def handle_market_event(event: str, sku: str, variants: list[dict[str, Any]]) -> None:
    """Apply one market event with its own session and clients."""
    try:
        async with get_db_session() as session, reconciliation_context(session) as service:
            if event == "out_of_stock":
                await service.mark_out_of_stock(sku)
            else:
                report = await service.reconcile_product(sku, variants)
                logger.info("Price change processed", sku=sku, **report.to_dict())
    except Exception as e:
        # Response already sent
        logger.error("Market webhook processing failed", market_event=event, sku=sku, error=str(e))


# =============================================================================
# Endpoints
# =============================================================================


@router.post(
    "/catalog",
    response_model=WebhookResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={200: {"model": WebhookResponse}, 401: {}, 422: {}},
)
async def receive_catalog_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Receive a catalog product webhook.

    Responses:
    - 202 queued (and processed inline when enabled)
    - 200 duplicate delivery or ping, nothing queued
    - 401 signature missing or invalid
    - 422 unsupported topic or malformed envelope
    """
    settings = get_settings()
    body = await request.body()

    try:
        require_valid_signature(
            body,
            _header(request, "X-WC-Webhook-Signature", "X-Webhook-Signature"),
            settings.webhook_secret,
            encoding="base64",
        )
    except SignatureVerificationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e

    data = _decode_json(body)
    if not isinstance(data, dict):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Body must be an object")

    try:
        topic, payload, delivery_id = unwrap_catalog_envelope(
            data,
            _header(request, "X-WC-Webhook-Topic", "X-Webhook-Topic"),
            _header(request, "X-WC-Webhook-Delivery-ID", "X-Webhook-Delivery-ID"),
        )
        result = await processor.receive(
            topic or "",
            payload,
            delivery_id,
            process_inline=settings.webhook_process_inline,
        )
    except (UnsupportedTopicError, EntityValidationError) as e:
        logger.warning("Catalog webhook rejected", error=str(e))
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    if result.status != "accepted":
        return JSONResponse(status_code=status.HTTP_200_OK, content=result.to_dict())
    return WebhookResponse(**result.to_dict())


@router.post("/market", response_model=WebhookResponse)
async def receive_market_webhook(request: Request, background_tasks: BackgroundTasks) -> WebhookResponse:
    """
    Receive a market-price event.

    The sender is acknowledged as soon as the signature and body check out;
    the catalog update runs after the response is sent.
    """
    settings = get_settings()
    body = await request.body()

    try:
        require_valid_signature(
            body,
            _header(request, "X-Market-Signature", "X-Webhook-Signature"),
            settings.market_webhook_secret,
            encoding="hex",
        )
    except SignatureVerificationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e

    data = _decode_json(body)
    if not isinstance(data, dict):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Body must be an object")

    event, sku, variants = parse_market_event(data)
    logger.info("Market webhook received", market_event=event, sku=sku, variants=len(variants))

    if event not in MARKET_EVENTS:
        logger.info("Unhandled market webhook event", market_event=event)
        return WebhookResponse(status="ignored")
    if not sku:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Missing SKU")
    if event == "price_change" and not variants:
        logger.warning("Price change webhook has no variant data", sku=sku)
        return WebhookResponse(status="ignored")

    background_tasks.add_task(handle_market_event, event, sku, variants)
    return WebhookResponse(status="accepted")
