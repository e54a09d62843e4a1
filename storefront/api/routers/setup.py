"""
First-run setup: report schema state and create the first admin.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.api.deps import client_ip, get_config
from storefront.api.schemas import SetupRequest, ok
from storefront.db.database import get_db
from storefront.db.setup import create_first_admin, setup_status

router = APIRouter(prefix="/api/setup", tags=["setup"])


@router.get("/status")
def get_setup_status(request: Request, db: Session = Depends(get_db)):
    return setup_status(request.app.state.db, db)


@router.post("", status_code=201)
def run_setup(
    body: SetupRequest,
    request: Request,
    db: Session = Depends(get_db),
    config=Depends(get_config),
    ip_address=Depends(client_ip),
):
    admin_id = create_first_admin(
        db,
        request.app.state.hasher,
        email=body.email,
        password=body.password,
        confirm_password=body.confirm_password,
        first_name=body.first_name,
        last_name=body.last_name,
        setup_secret=body.setup_secret,
        expected_secret=config.setup_secret,
        ip_address=ip_address,
    )
    return ok(message="Admin account created", userId=admin_id)
