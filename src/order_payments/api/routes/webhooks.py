"""Inbound gateway webhooks.

The body is read raw; signatures are computed over the exact bytes the
gateway sent, so nothing is parsed before the engine checks them.
"""

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from order_payments.api.dependencies import Reconciliation
from order_payments.api.schemas import WebhookResponse
from order_payments.services.reconciliation import ReconciliationEngine

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _handle(
    request: Request, engine: ReconciliationEngine, gateway_name: str
) -> JSONResponse:
    gateway = request.app.state.gateways.get(gateway_name)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Gateway {gateway_name} is not enabled",
        )

    raw_body = await request.body()
    signature = request.headers.get(gateway.signature_header)
    outcome = await engine.process_webhook(gateway, raw_body, signature)

    body = WebhookResponse(
        success=outcome.success or outcome.acknowledged,
        code=outcome.code.value,
        message=outcome.message,
        order_id=outcome.order_id,
    )
    return JSONResponse(status_code=outcome.http_status, content=body.model_dump(mode="json"))


@router.post(
    "/chapa",
    response_model=WebhookResponse,
    responses={400: {"model": WebhookResponse}, 401: {"model": WebhookResponse}},
)
async def chapa_webhook(request: Request, engine: Reconciliation) -> JSONResponse:
    """Chapa payment notification (HMAC-SHA256, X-Chapa-Signature)."""
    return await _handle(request, engine, "chapa")


@router.post(
    "/telebirr",
    response_model=WebhookResponse,
    responses={400: {"model": WebhookResponse}, 401: {"model": WebhookResponse}},
)
async def telebirr_webhook(request: Request, engine: Reconciliation) -> JSONResponse:
    """Telebirr payment notification (RSA-SHA256, X-Telebirr-Signature)."""
    return await _handle(request, engine, "telebirr")
