"""
Signed-in customer endpoints: profile and wishlist.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.api.schemas import ProfileUpdate, WishlistRequest, ok, set_fields
from storefront.db.database import get_db
from storefront.db.models import User
from storefront.services.accounts import AccountService, serialize_user

router = APIRouter(prefix="/api", tags=["account"])


@router.get("/user/profile")
def get_profile(user: User = Depends(get_current_user)):
    return ok(user=serialize_user(user))


@router.put("/user/profile")
def update_profile(request: ProfileUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    user = AccountService(db).update_profile(user, set_fields(request))
    return ok(user=serialize_user(user))


@router.get("/wishlist")
def get_wishlist(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ok(items=AccountService(db).wishlist(user))


@router.post("/wishlist")
def add_to_wishlist(request: WishlistRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    added = AccountService(db).add_to_wishlist(user, request.product_id)
    return ok(added=added)


@router.delete("/wishlist")
def remove_from_wishlist(
    product_id: int = Query(..., alias="productId"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    removed = AccountService(db).remove_from_wishlist(user, product_id)
    return ok(removed=removed)
