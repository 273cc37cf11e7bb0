"""
PhonePe webhook endpoint.

POST /phonepe/hooks — Receive a payment/refund callback, normalize it and
apply it to the host platform. The response status tells PhonePe whether to
retry: 200/204 acknowledge, 400 rejects, 409 asks for redelivery.
"""

import json
import logging

from fastapi import APIRouter, Request, Response

from phonepe_adapter.webhooks.events import (
    MissingAuthorizationError,
    normalize_raw_body,
    resolve_authorization_header,
)
from phonepe_adapter.webhooks.reconciler import WEBHOOK_PATH

logger = logging.getLogger("phonepe_adapter.api.webhooks")

router = APIRouter(tags=["webhooks"])


@router.post(WEBHOOK_PATH)
async def receive_webhook(request: Request) -> Response:
    provider = request.app.state.provider
    reconciler = request.app.state.reconciler

    raw_body = normalize_raw_body(await request.body())
    if raw_body.lstrip().startswith("{"):
        try:
            body = json.loads(raw_body)
        except ValueError:
            body = None
        # {"response": "<base64>"} envelopes are unwrapped to the inner text
        if isinstance(body, dict) and body.get("response"):
            raw_body = normalize_raw_body(body)

    try:
        event = await provider.construct_webhook_event(resolve_authorization_header(request.headers), raw_body)
    except MissingAuthorizationError as e:
        logger.error("Rejected webhook: %s", e)
        return Response(status_code=400)

    result = await reconciler.handle_webhook(event)
    return Response(status_code=result.status_code)
