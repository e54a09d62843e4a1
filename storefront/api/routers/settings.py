"""
Public store settings (only storefront-safe fields).
"""

from fastapi import APIRouter, Depends

from storefront.api.deps import get_settings_store
from storefront.api.schemas import ok
from storefront.services.settings_store import SettingsStore

router = APIRouter(prefix="/api", tags=["settings"])


@router.get("/settings")
def public_settings(store: SettingsStore = Depends(get_settings_store)):
    return ok(settings=store.public())
