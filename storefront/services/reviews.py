"""
Product reviews with moderation.

Customer reviews start as pending; admin-authored reviews are approved
immediately. Product rating/reviews_count are recomputed from approved
reviews whenever moderation changes the approved set.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.core.errors import NotFound, ValidationFailed
from storefront.db.models import Order, OrderItem, Product, Review, User
from storefront.utils.logger import get_logger

logger = get_logger("reviews")

REVIEW_STATUSES = ("pending", "approved", "rejected")


def serialize_review(review: Review) -> Dict[str, Any]:
    author = None
    if review.user is not None:
        author = review.user.first_name or review.user.email.split("@")[0]
    return {
        "id": review.id,
        "product_id": review.product_id,
        "user_id": review.user_id,
        "author": author,
        "rating": review.rating,
        "title": review.title,
        "comment": review.comment,
        "verified_purchase": review.verified_purchase,
        "status": review.status,
        "created_at": review.created_at.isoformat() if review.created_at else None,
    }


class ReviewService:
    def __init__(self, db: Session, cache=None):
        self.db = db
        self.cache = cache

    def list_approved(self, product_id: int) -> List[Dict[str, Any]]:
        reviews = self.db.execute(
            select(Review)
            .where(Review.product_id == product_id, Review.status == "approved")
            .order_by(Review.created_at.desc(), Review.id.desc())
        ).scalars().all()
        return [serialize_review(r) for r in reviews]

    def _is_verified_purchase(self, user: User, product_id: int, order_id: Optional[int]) -> bool:
        if order_id is None:
            return False
        match = self.db.execute(
            select(OrderItem.id)
            .join(Order, OrderItem.order_id == Order.id)
            .where(Order.id == order_id, Order.user_id == user.id, OrderItem.product_id == product_id)
            .limit(1)
        ).first()
        return match is not None

    def create(self, user: User, product_id: int, rating: int, title: Optional[str] = None,
               comment: Optional[str] = None, order_id: Optional[int] = None) -> Review:
        if not 1 <= int(rating) <= 5:
            raise ValidationFailed("Rating must be between 1 and 5")
        if self.db.get(Product, product_id) is None:
            raise NotFound("Product not found")
        review = Review(
            product_id=product_id,
            user_id=user.id,
            order_id=order_id,
            rating=int(rating),
            title=title,
            comment=comment,
            verified_purchase=self._is_verified_purchase(user, product_id, order_id),
            status="approved" if user.is_admin else "pending",
        )
        self.db.add(review)
        self.db.flush()
        if review.status == "approved":
            self._refresh_product_rating(product_id)
        self.db.commit()
        self.db.refresh(review)
        logger.info("review_created: id=%s product_id=%s status=%s verified=%s",
                    review.id, product_id, review.status, review.verified_purchase)
        return review

    def list_admin(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = select(Review)
        if status:
            query = query.where(Review.status == status)
        reviews = self.db.execute(query.order_by(Review.created_at.desc(), Review.id.desc())).scalars().all()
        return [serialize_review(r) for r in reviews]

    def moderate(self, review_id: int, status: str) -> Review:
        if status not in REVIEW_STATUSES:
            raise ValidationFailed(f"status must be one of {', '.join(REVIEW_STATUSES)}")
        review = self.db.get(Review, review_id)
        if review is None:
            raise NotFound("Review not found")
        review.status = status
        self.db.flush()
        self._refresh_product_rating(review.product_id)
        self.db.commit()
        self.db.refresh(review)
        return review

    def delete(self, review_id: int) -> None:
        review = self.db.get(Review, review_id)
        if review is None:
            raise NotFound("Review not found")
        product_id = review.product_id
        self.db.delete(review)
        self.db.flush()
        self._refresh_product_rating(product_id)
        self.db.commit()

    def _refresh_product_rating(self, product_id: int) -> None:
        count, average = self.db.execute(
            select(func.count(Review.id), func.avg(Review.rating))
            .where(Review.product_id == product_id, Review.status == "approved")
        ).one()
        product = self.db.get(Product, product_id)
        if product is None:
            return
        product.reviews_count = count
        product.rating = round(float(average), 2) if average is not None else 0.0
        if self.cache is not None:
            self.cache.invalidate_product(product_id)
