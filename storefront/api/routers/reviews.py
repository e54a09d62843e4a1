"""
Product reviews. Customers' reviews wait for moderation; admin reviews
are published immediately.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_cache, get_current_user
from storefront.api.schemas import ReviewCreate, ok
from storefront.db.database import get_db
from storefront.db.models import User
from storefront.services.reviews import ReviewService, serialize_review

router = APIRouter(prefix="/api", tags=["reviews"])


@router.get("/reviews")
def list_reviews(product_id: int = Query(..., alias="productId"), db: Session = Depends(get_db)):
    return ok(reviews=ReviewService(db).list_approved(product_id))


@router.post("/reviews", status_code=201)
def create_review(
    request: ReviewCreate,
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
    user: User = Depends(get_current_user),
):
    review = ReviewService(db, cache).create(
        user, request.product_id, request.rating,
        title=request.title, comment=request.comment, order_id=request.order_id,
    )
    return ok(review=serialize_review(review))
