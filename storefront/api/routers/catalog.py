"""
Public catalog endpoints: products, search, categories, comparison,
recommendations and stock levels. Stock updates require an admin.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_cache, require_admin
from storefront.api.schemas import StockUpdate, ok
from storefront.db.database import get_db
from storefront.services.catalog import CatalogService, serialize_product

router = APIRouter(prefix="/api", tags=["catalog"])


def get_catalog(db: Session = Depends(get_db), cache=Depends(get_cache)) -> CatalogService:
    return CatalogService(db, cache)


@router.get("/products")
def list_products(
    category_id: Optional[int] = Query(None, alias="categoryId"),
    featured: Optional[bool] = None,
    limit: int = 20,
    offset: int = 0,
    catalog: CatalogService = Depends(get_catalog),
):
    return ok(**catalog.list_products(category_id=category_id, limit=limit, offset=offset, featured=featured))


@router.get("/products/{product_id}")
def get_product(product_id: int, catalog: CatalogService = Depends(get_catalog)):
    return ok(product=catalog.get_product(product_id))


@router.get("/search")
def search_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    limit: int = 20,
    offset: int = 0,
    catalog: CatalogService = Depends(get_catalog),
):
    """Filtered product search; `category` accepts an id or a slug."""
    return ok(**catalog.search(
        q=q, category=category, min_price=min_price, max_price=max_price, in_stock=in_stock,
        sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset,
    ))


@router.get("/categories")
def list_categories(slug: Optional[str] = None, catalog: CatalogService = Depends(get_catalog)):
    if slug:
        return ok(category=catalog.get_category_by_slug(slug))
    return ok(categories=catalog.list_categories())


@router.get("/compare")
def compare_products(ids: Optional[str] = None, catalog: CatalogService = Depends(get_catalog)):
    """`ids` is a comma-separated list of one to four product ids."""
    return ok(products=catalog.compare(ids))


@router.get("/recommendations")
def recommendations(
    product_id: Optional[int] = Query(None, alias="productId"),
    catalog: CatalogService = Depends(get_catalog),
):
    return ok(recommendations=catalog.recommendations(product_id))


@router.get("/inventory")
def inventory(type: Optional[str] = None, catalog: CatalogService = Depends(get_catalog)):
    return ok(products=catalog.inventory(low_stock_only=type == "low-stock"))


@router.put("/inventory", dependencies=[Depends(require_admin)])
def update_stock(request: StockUpdate, catalog: CatalogService = Depends(get_catalog)):
    product = catalog.set_stock(request.product_id, request.stock_quantity)
    return ok(product=serialize_product(product))
