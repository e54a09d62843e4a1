"""
Storefront - e-commerce storefront and admin backend

A FastAPI service with:
- Catalog, search and cached product reads
- Server-side cart pricing, coupons and shipping rules
- Transactional checkout with Stripe payment hand-off
- Accounts, reviews, subscriptions and store administration
"""

__version__ = "1.0.0"

from storefront.core.config import StoreConfig, get_config

__all__ = [
    'StoreConfig',
    'get_config',
]
