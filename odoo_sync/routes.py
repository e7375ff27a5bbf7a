#=======================================================================================
# odoo_sync/routes.py
# Admin API for the sync queue. Everything here requires HTTP Basic (admin).
#
# Included in main_app.py with NO extra prefix:
#   app.include_router(api_router)
#=======================================================================================

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from odoo_sync.deps import get_services, verify_admin
from odoo_sync.models.jobs import STATUSES
from odoo_sync.queue.repository import job_to_dict
from odoo_sync.services import Services
from odoo_sync.sync.circuit_breaker import OPEN
from odoo_sync.sync.errors import OdooRpcError

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["Sync API"], dependencies=[Depends(verify_admin)])


class SyncRunRequest(BaseModel):
    dry_run: bool = False


class ReconcileRequest(BaseModel):
    module: str = Field(..., min_length=1)
    entity_type: Optional[str] = None
    fix: bool = False


class CleanupRequest(BaseModel):
    days: int = Field(7, ge=0, le=3650)


# ---------------------------
# Queue
# ---------------------------

@router.get("/queue/stats")
async def queue_stats(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return await services.queue.stats()


@router.get("/queue/jobs")
async def queue_jobs(
    page: int = Query(1, ge=1),
    per_page: int = Query(30, ge=1, le=100),
    status: Optional[str] = Query(None),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    if status and status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status {status!r}")
    result = await services.queue_repo.list_jobs(page, per_page, status)
    result["items"] = [job_to_dict(j) for j in result["items"]]
    return result


@router.get("/queue/jobs/{job_id}")
async def queue_job(job_id: int, services: Services = Depends(get_services)) -> Dict[str, Any]:
    job = await services.queue_repo.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_to_dict(job)


@router.delete("/queue/jobs/{job_id}")
async def queue_cancel(job_id: int, services: Services = Depends(get_services)) -> Dict[str, Any]:
    if not await services.queue.cancel(job_id):
        raise HTTPException(status_code=409, detail="Job not found or no longer pending")
    return {"ok": True, "job_id": job_id}


@router.post("/queue/retry")
async def queue_retry(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return {"ok": True, "reset": await services.queue.retry_failed()}


@router.post("/queue/cleanup")
async def queue_cleanup(body: Optional[CleanupRequest] = None,
                        services: Services = Depends(get_services)) -> Dict[str, Any]:
    return {"ok": True, "deleted": await services.queue.cleanup((body or CleanupRequest()).days)}


# ---------------------------
# Sync / reconcile
# ---------------------------

@router.post("/sync/run")
async def sync_run(body: Optional[SyncRunRequest] = None,
                   services: Services = Depends(get_services)) -> Dict[str, Any]:
    dry_run = bool(body and body.dry_run)
    logger.info("[ENGINE] run requested via API (dry_run=%s)", dry_run)
    report = await services.sync_engine.process_queue(dry_run=dry_run)
    return report.to_dict()


@router.post("/reconcile")
async def reconcile(body: ReconcileRequest, services: Services = Depends(get_services)) -> Dict[str, Any]:
    module = services.registry.get(body.module)
    if module is None:
        raise HTTPException(status_code=404, detail=f"Unknown module {body.module!r}")
    models = module.get_odoo_models()
    if body.entity_type:
        if body.entity_type not in models:
            raise HTTPException(status_code=404, detail=f"Unknown entity type {body.entity_type!r}")
        models = {body.entity_type: models[body.entity_type]}
    results = await services.reconciler.reconcile_module(body.module, models, fix=body.fix)
    return {"module": body.module, "fix": body.fix, "results": results}


# ---------------------------
# Health
# ---------------------------

@router.get("/health")
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    odoo: Dict[str, Any] = {"url": services.settings.ODOO_URL, "reachable": False}
    rpc_call = getattr(services.transport, "rpc_call", None)
    if rpc_call is not None and services.breaker.state != OPEN and services.settings.ODOO_URL:
        try:
            version = await rpc_call(
                "/jsonrpc", {"service": "common", "method": "version", "args": []}
            )
            odoo["reachable"] = True
            if isinstance(version, dict):
                odoo["server_version"] = version.get("server_version")
        except OdooRpcError as e:
            odoo["error"] = str(e)
    return {
        "status": "ok",
        "circuit": services.breaker.snapshot(),
        "odoo": odoo,
        "queue": await services.queue.stats(),
        "modules": [m.module_id for m in services.registry.all()],
    }
