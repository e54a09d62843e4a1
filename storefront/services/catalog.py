"""
Catalog reads (products, categories, search, comparison, recommendations),
stock levels, and admin catalog writes.

Product detail and the category listing are read through the Redis cache;
admin writes invalidate the affected keys.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from storefront.core.errors import Conflict, NotFound, ValidationFailed
from storefront.db.models import Category, Product
from storefront.pricing.money import parse_price
from storefront.utils.logger import get_logger

logger = get_logger("catalog")

SORT_COLUMNS = {
    "name": Product.name,
    "price": Product.price,
    "created_at": Product.created_at,
    "rating": Product.rating,
}
MAX_PAGE_SIZE = 100
LOW_STOCK_LEVEL = 5
MAX_COMPARE = 4
RECOMMENDATION_LIMIT = 6

PRODUCT_FIELDS = (
    "name", "slug", "description", "price", "original_price", "category_id", "image_url",
    "images", "stock_quantity", "sku", "tags", "is_active", "featured",
)
CATEGORY_FIELDS = ("name", "slug", "description", "image_url", "parent_id", "is_active", "sort_order")


def serialize_product(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "description": product.description,
        "price": product.price,
        "original_price": product.original_price,
        "category_id": product.category_id,
        "category_name": product.category.name if product.category else None,
        "image_url": product.image_url,
        "images": product.images or [],
        "stock_quantity": product.stock_quantity,
        "in_stock": product.in_stock,
        "sku": product.sku,
        "tags": product.tags or [],
        "rating": product.rating or 0.0,
        "reviews_count": product.reviews_count or 0,
        "is_active": product.is_active,
        "featured": product.featured,
    }


def serialize_stock(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "sku": product.sku,
        "price": product.price,
        "stock_quantity": product.stock_quantity,
        "in_stock": product.in_stock,
    }


def serialize_category(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "image_url": category.image_url,
        "parent_id": category.parent_id,
        "is_active": category.is_active,
        "sort_order": category.sort_order,
    }


def _page(limit: int, offset: int):
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(offset))
    return limit, offset


class CatalogService:
    def __init__(self, db: Session, cache=None):
        self.db = db
        self.cache = cache

    # Products

    def list_products(self, category_id: Optional[int] = None, limit: int = 20, offset: int = 0,
                      featured: Optional[bool] = None, include_inactive: bool = False) -> Dict[str, Any]:
        limit, offset = _page(limit, offset)
        query = select(Product)
        if not include_inactive:
            query = query.where(Product.is_active.is_(True))
        if category_id is not None:
            query = query.where(Product.category_id == category_id)
        if featured is not None:
            query = query.where(Product.featured.is_(featured))
        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        products = self.db.execute(
            query.order_by(Product.created_at.desc(), Product.id.desc()).limit(limit).offset(offset)
        ).scalars().all()
        return {
            "products": [serialize_product(p) for p in products],
            "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + len(products) < total},
        }

    def get_product(self, product_id: int) -> Dict[str, Any]:
        if self.cache is not None:
            cached = self.cache.get_product(product_id)
            if cached is not None:
                return cached
        product = self.db.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFound("Product not found")
        data = serialize_product(product)
        if self.cache is not None:
            self.cache.set_product(product_id, data)
        return data

    def search(
        self,
        q: Optional[str] = None,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        in_stock: Optional[bool] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Filtered, paginated product search.

        category may be a numeric id or a slug. sort_by is restricted to
        SORT_COLUMNS; anything else is rejected rather than interpolated.
        """
        limit, offset = _page(limit, offset)
        if sort_by not in SORT_COLUMNS:
            raise ValidationFailed(f"sortBy must be one of {', '.join(SORT_COLUMNS)}")
        if sort_order.lower() not in ("asc", "desc"):
            raise ValidationFailed("sortOrder must be asc or desc")

        query = select(Product).where(Product.is_active.is_(True))
        if q:
            pattern = f"%{q.strip().lower()}%"
            query = query.where(or_(
                func.lower(Product.name).like(pattern),
                func.lower(Product.description).like(pattern),
            ))
        if category:
            if str(category).isdigit():
                query = query.where(Product.category_id == int(category))
            else:
                query = query.join(Category, Product.category_id == Category.id).where(Category.slug == category)
        if min_price is not None:
            query = query.where(Product.price >= min_price)
        if max_price is not None:
            query = query.where(Product.price <= max_price)
        if in_stock:
            query = query.where(Product.stock_quantity > 0)

        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        column = SORT_COLUMNS[sort_by]
        ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
        products = self.db.execute(
            query.order_by(ordering, Product.id.asc()).limit(limit).offset(offset)
        ).scalars().all()
        return {
            "products": [serialize_product(p) for p in products],
            "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + len(products) < total},
        }

    def create_product(self, data: Dict[str, Any]) -> Product:
        values = {k: v for k, v in data.items() if k in PRODUCT_FIELDS}
        if not values.get("name"):
            raise ValidationFailed("Product name is required")
        values["price"] = parse_price(values.get("price"))
        if values["price"] < 0:
            raise ValidationFailed("Price must not be negative")
        if values.get("original_price") is not None:
            values["original_price"] = parse_price(values["original_price"])
        values["stock_quantity"] = values.get("stock_quantity") or 0
        if values["stock_quantity"] < 0:
            raise ValidationFailed("Stock quantity must not be negative")
        self._check_category(values.get("category_id"))
        product = Product(**values)
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)
        logger.info("product_created: id=%s name=%r", product.id, product.name)
        return product

    def update_product(self, product_id: int, data: Dict[str, Any]) -> Product:
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        for name, value in data.items():
            if name not in PRODUCT_FIELDS:
                continue
            if name in ("price", "original_price") and value is not None:
                value = parse_price(value)
                if value < 0:
                    raise ValidationFailed(f"{name} must not be negative")
            if name == "stock_quantity" and value is not None and value < 0:
                raise ValidationFailed("Stock quantity must not be negative")
            if name == "category_id":
                self._check_category(value)
            setattr(product, name, value)
        self.db.commit()
        self.db.refresh(product)
        if self.cache is not None:
            self.cache.invalidate_product(product_id)
        logger.info("product_updated: id=%s fields=%s", product_id, sorted(data))
        return product

    def delete_product(self, product_id: int) -> None:
        """Soft delete: the row stays for order history."""
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        product.is_active = False
        self.db.commit()
        if self.cache is not None:
            self.cache.invalidate_product(product_id)

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is not None and self.db.get(Category, category_id) is None:
            raise ValidationFailed("Category does not exist")

    # Categories

    def list_categories(self) -> List[Dict[str, Any]]:
        if self.cache is not None:
            cached = self.cache.get_categories()
            if cached is not None:
                return cached
        categories = self.db.execute(
            select(Category).where(Category.is_active.is_(True)).order_by(Category.sort_order, Category.name)
        ).scalars().all()
        data = [serialize_category(c) for c in categories]
        if self.cache is not None:
            self.cache.set_categories(data)
        return data

    def get_category_by_slug(self, slug: str) -> Dict[str, Any]:
        category = self.db.execute(select(Category).where(Category.slug == slug)).scalar_one_or_none()
        if category is None:
            raise NotFound("Category not found")
        return serialize_category(category)

    def create_category(self, data: Dict[str, Any]) -> Category:
        values = {k: v for k, v in data.items() if k in CATEGORY_FIELDS}
        if not values.get("name") or not values.get("slug"):
            raise ValidationFailed("Category name and slug are required")
        if self.db.execute(select(Category.id).where(Category.slug == values["slug"])).scalar_one_or_none():
            raise Conflict("A category with this slug already exists")
        category = Category(**values)
        self.db.add(category)
        self.db.commit()
        self.db.refresh(category)
        if self.cache is not None:
            self.cache.invalidate_categories()
        return category

    def update_category(self, category_id: int, data: Dict[str, Any]) -> Category:
        category = self.db.get(Category, category_id)
        if category is None:
            raise NotFound("Category not found")
        new_slug = data.get("slug")
        if new_slug and new_slug != category.slug:
            if self.db.execute(select(Category.id).where(Category.slug == new_slug)).scalar_one_or_none():
                raise Conflict("A category with this slug already exists")
        for name, value in data.items():
            if name in CATEGORY_FIELDS:
                setattr(category, name, value)
        self.db.commit()
        self.db.refresh(category)
        if self.cache is not None:
            self.cache.invalidate_categories()
        return category

    def delete_category(self, category_id: int) -> None:
        category = self.db.get(Category, category_id)
        if category is None:
            raise NotFound("Category not found")
        in_use = self.db.execute(
            select(func.count(Product.id)).where(Product.category_id == category_id, Product.is_active.is_(True))
        ).scalar_one()
        if in_use:
            raise Conflict(f"Category has {in_use} active products")
        self.db.delete(category)
        self.db.commit()
        if self.cache is not None:
            self.cache.invalidate_categories()

    # Inventory

    def inventory(self, low_stock_only: bool = False) -> List[Dict[str, Any]]:
        """Stock levels of active products; low_stock_only keeps those at or under LOW_STOCK_LEVEL."""
        query = select(Product).where(Product.is_active.is_(True))
        if low_stock_only:
            query = query.where(Product.stock_quantity <= LOW_STOCK_LEVEL).order_by(
                Product.stock_quantity.asc(), Product.name.asc()
            )
        else:
            query = query.order_by(Product.name.asc())
        return [serialize_stock(p) for p in self.db.execute(query).scalars().all()]

    def set_stock(self, product_id: Optional[int], stock_quantity: Optional[int]) -> Product:
        if not product_id or stock_quantity is None:
            raise ValidationFailed("productId and stock_quantity are required")
        if stock_quantity < 0:
            raise ValidationFailed("Stock quantity must not be negative")
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        previous = product.stock_quantity
        product.stock_quantity = stock_quantity
        self.db.commit()
        self.db.refresh(product)
        if self.cache is not None:
            self.cache.invalidate_product(product_id)
        logger.info("stock_updated: id=%s from=%s to=%s", product_id, previous, stock_quantity)
        return product

    def inventory_alerts(self, threshold: int, include_out_of_stock: bool = True) -> List[Dict[str, Any]]:
        """Products at or under the threshold, emptiest first. status is "out" at zero stock, else "low"."""
        query = select(Product).where(Product.is_active.is_(True), Product.stock_quantity <= threshold)
        if not include_out_of_stock:
            query = query.where(Product.stock_quantity > 0)
        products = self.db.execute(
            query.order_by(Product.stock_quantity.asc(), Product.name.asc())
        ).scalars().all()
        return [
            {
                "id": p.id,
                "product_name": p.name,
                "sku": p.sku,
                "current_stock": p.stock_quantity,
                "threshold": threshold,
                "status": "out" if p.stock_quantity <= 0 else "low",
            }
            for p in products
        ]

    # Compare / recommendations

    def compare(self, ids: Optional[str]) -> List[Dict[str, Any]]:
        """
        Products for a side-by-side comparison, in the order requested.

        ids is the raw comma-separated query value; entries that are not
        integers are skipped.

        Raises:
            ValidationFailed: no usable ids, or more than MAX_COMPARE.
        """
        if not ids:
            raise ValidationFailed("Product IDs are required")
        wanted = []
        for part in ids.split(","):
            part = part.strip()
            if part.lstrip("-").isdigit() and int(part) not in wanted:
                wanted.append(int(part))
        if not wanted or len(wanted) > MAX_COMPARE:
            raise ValidationFailed(f"Please provide 1-{MAX_COMPARE} valid product IDs")
        products = self.db.execute(
            select(Product).where(Product.id.in_(wanted), Product.is_active.is_(True))
        ).scalars().all()
        by_id = {p.id: p for p in products}
        return [serialize_product(by_id[i]) for i in wanted if i in by_id]

    def recommendations(self, product_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Up to RECOMMENDATION_LIMIT products from the same category as
        product_id, excluding it. Falls back to the best-rated other products
        when the category has nothing else or no product is given.
        """
        base = select(Product).where(Product.is_active.is_(True))
        if product_id is not None:
            base = base.where(Product.id != product_id)
        ordering = (Product.rating.desc(), Product.id.asc())

        products = []
        if product_id is not None:
            category_id = self.db.execute(
                select(Product.category_id).where(Product.id == product_id)
            ).scalar_one_or_none()
            if category_id is not None:
                products = self.db.execute(
                    base.where(Product.category_id == category_id).order_by(*ordering).limit(RECOMMENDATION_LIMIT)
                ).scalars().all()
        if not products:
            products = self.db.execute(base.order_by(*ordering).limit(RECOMMENDATION_LIMIT)).scalars().all()
        return [
            {
                "id": p.id,
                "name": p.name,
                "price": p.price,
                "rating": p.rating or 0.0,
                "reviews_count": p.reviews_count or 0,
                "image_url": p.image_url,
            }
            for p in products
        ]
