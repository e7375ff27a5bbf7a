# odoo_sync/deps.py
# FastAPI dependencies shared by the webhook and admin routers.
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from odoo_sync.services import Services

security = HTTPBasic()


def get_services(request: Request) -> Services:
    return request.app.state.services


def verify_admin(request: Request, credentials: HTTPBasicCredentials = Depends(security)):
    cfg = get_services(request).settings
    ok_user = secrets.compare_digest(credentials.username or "", cfg.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", cfg.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )
