# odoo_sync/webhooks/inbound.py
# Change notifications from WordPress and Odoo. Each one becomes a queued job.
import logging
import secrets

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from odoo_sync.deps import get_services
from odoo_sync.models.jobs import DELETE
from odoo_sync.services import Services
from odoo_sync.sync.result import SyncContext
from odoo_sync.webhooks.models import OdooChangeEvent, WpChangeEvent

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

TOKEN_HEADER = "X-Sync-Token"


def _client_key(request: Request) -> str:
    fwd = request.headers.get("x-forwarded-for") or ""
    if fwd:
        return fwd.split(",", 1)[0].strip()
    return request.client.host if request.client else "unknown"


def _guard(request: Request, services: Services, source: str) -> JSONResponse | None:
    """Token + rate limit. Returns an error response, or None to proceed."""
    expected = services.settings.WEBHOOK_TOKEN or ""
    received = request.headers.get(TOKEN_HEADER) or request.query_params.get("token") or ""
    if not expected:
        logger.warning("[WEBHOOK] %s: WEBHOOK_TOKEN not configured; rejecting", source)
        return JSONResponse(status_code=401, content={"ok": False, "reason": "no_token_configured"})
    if not secrets.compare_digest(received, expected):
        logger.warning("[WEBHOOK] %s: invalid token from %s", source, _client_key(request))
        return JSONResponse(status_code=401, content={"ok": False, "reason": "invalid_token"})

    if not services.rate_limiter.allow(f"{source}:{_client_key(request)}"):
        logger.warning("[WEBHOOK] %s: rate limit hit for %s", source, _client_key(request))
        return JSONResponse(status_code=429, content={"ok": False, "reason": "rate_limited"})
    return None


async def _parse(request: Request, model):
    try:
        raw = await request.json()
    except ValueError as e:
        return None, JSONResponse(status_code=422, content={"ok": False, "reason": "invalid_json", "error": str(e)})
    try:
        return model.model_validate(raw), None
    except ValidationError as e:
        logger.warning("[WEBHOOK] payload validation error: %s", e)
        return None, JSONResponse(
            status_code=422,
            content={"ok": False, "reason": "invalid_payload", "error": e.errors(include_url=False, include_context=False)},
        )


@router.post("/wp")
async def wp_webhook(request: Request, services: Services = Depends(get_services)) -> JSONResponse:
    denied = _guard(request, services, "wp")
    if denied is not None:
        return denied
    event, error = await _parse(request, WpChangeEvent)
    if error is not None:
        return error

    module = services.registry.get(event.module)
    if module is None:
        return JSONResponse(status_code=404, content={"ok": False, "reason": "unknown_module", "module": event.module})

    # Sender included the record: store it locally and let the change hook queue the push.
    if event.data is not None and hasattr(module, "save_local"):
        ctx = SyncContext()
        if event.action == DELETE:
            await module.delete_local(event.entity_type, event.wp_id, ctx)
            local_id = event.wp_id
        else:
            local_id = await module.save_local(event.entity_type, event.wp_id, event.data, ctx)
        logger.info("[WEBHOOK] wp %s/%s %s wp_id=%s stored", event.module, event.entity_type, event.action, local_id)
        return JSONResponse({"ok": True, "wp_id": local_id, "stored": True})

    job_id = await services.queue.push(
        event.module, event.entity_type, event.action, event.wp_id,
        odoo_id=event.odoo_id, payload=event.payload, priority=event.priority,
    )
    if job_id is None:
        return JSONResponse(status_code=503, content={"ok": False, "reason": "enqueue_failed"})
    logger.info("[WEBHOOK] wp %s/%s %s wp_id=%s -> job %s",
                event.module, event.entity_type, event.action, event.wp_id, job_id)
    return JSONResponse({"ok": True, "job_id": job_id})


@router.post("/odoo")
async def odoo_webhook(request: Request, services: Services = Depends(get_services)) -> JSONResponse:
    denied = _guard(request, services, "odoo")
    if denied is not None:
        return denied
    event, error = await _parse(request, OdooChangeEvent)
    if error is not None:
        return error

    if event.module not in services.registry:
        return JSONResponse(status_code=404, content={"ok": False, "reason": "unknown_module", "module": event.module})

    job_id = await services.queue.pull(
        event.module, event.entity_type, event.action, event.odoo_id,
        wp_id=event.wp_id, payload=event.payload, priority=event.priority,
    )
    if job_id is None:
        return JSONResponse(status_code=503, content={"ok": False, "reason": "enqueue_failed"})
    logger.info("[WEBHOOK] odoo %s/%s %s odoo_id=%s -> job %s",
                event.module, event.entity_type, event.action, event.odoo_id, job_id)
    return JSONResponse({"ok": True, "job_id": job_id})
