from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, Response

from notifyhub.services.subscription import NotificationIngressHandler

router = APIRouter()

_log = logging.getLogger("notifyhub.api.notifications")


def _ingress(request: Request) -> NotificationIngressHandler:
    handler = getattr(request.app.state, "ingress", None)
    if handler is None:
        raise HTTPException(status_code=503, detail="ingress handler is not configured")
    return handler


async def _process(handler: NotificationIngressHandler, body: object) -> None:
    try:
        result = await handler.handle(body)
    except Exception:
        _log.error("inbound delivery processing failed", exc_info=True)
        return
    if result.report.dropped:
        _log.info(
            "inbound delivery partially dropped",
            extra={"accepted": result.report.accepted, "dropped": len(result.report.dropped)},
        )


@router.get("/notifications")
async def validate_endpoint(validationToken: Optional[str] = Query(None)):
    if not validationToken:
        raise HTTPException(status_code=400, detail="validationToken is required")
    return PlainTextResponse(validationToken, status_code=200)


@router.post("/notifications")
async def receive_notifications(
    request: Request,
    background_tasks: BackgroundTasks,
    validationToken: Optional[str] = Query(None),
):
    # subscription creation handshake: echo the token as plain text
    if validationToken:
        return PlainTextResponse(validationToken, status_code=200)
    handler = _ingress(request)
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        raise HTTPException(status_code=400, detail="body must be JSON")
    # acknowledge promptly; decrypt and fan-out happen after the response
    background_tasks.add_task(_process, handler, body)
    return Response(status_code=202)


@router.get("/status")
async def subscription_status(request: Request):
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime is not configured")
    status = runtime.manager.status()
    status["pushLive"] = runtime.supervisor.push_live
    return status
