from typing import Callable, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..db.unit_of_work import UnitOfWork
from ..models.category import Category
from ..models.product import Product
from ..utils.dto import to_product_dto
from ..utils.pagination import normalize_paging, page_envelope
from . import cache as cache_keys
from .cache import Cache, InProcessCache
from .side_effects import best_effort


class CatalogService:
    """Read-only product lookups for storefront callers.

    Results are cached by key; stock and prices in a cached entry may lag
    the database until the next invalidation, so order pricing always reads
    the database directly.
    """

    def __init__(self, session_factory: Callable[[], Session], *, cache: Optional[Cache] = None):
        self._session_factory = session_factory
        self.cache = cache if cache is not None else InProcessCache()

    def list_products(
        self,
        *,
        query: Optional[str] = None,
        category: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict:
        p, ps = normalize_paging(page, page_size)
        cache_key = f"{cache_keys.PRODUCT_LIST_PREFIX}{query or ''}:{category or ''}:{p}:{ps}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        with UnitOfWork(self._session_factory) as uow:
            stmt = select(Product).where(Product.is_active.is_(True))
            if query:
                like = f"%{query}%"
                stmt = stmt.where(
                    or_(
                        Product.name.ilike(like),
                        Product.description.ilike(like),
                        Product.sku.ilike(like),
                    )
                )
            if category:
                stmt = stmt.join(Category, Category.id == Product.category_id, isouter=True).where(
                    or_(Category.slug == category, Product.category_id == category)
                )
            total = uow.session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
            rows = (
                uow.session.execute(
                    stmt.order_by(Product.sort_order.desc(), Product.name).offset((p - 1) * ps).limit(ps)
                )
                .scalars()
                .all()
            )
            result = page_envelope([to_product_dto(r) for r in rows], page=p, page_size=ps, total=total)
        best_effort("cache.set", self.cache.set, cache_key, result)
        return result

    def get_product(self, product_id: str) -> dict:
        """Return ProductDTO for given product id, or {} when missing or inactive."""
        key = cache_keys.product_key(product_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        with UnitOfWork(self._session_factory) as uow:
            row = uow.session.execute(
                select(Product).where(Product.id == product_id, Product.is_active.is_(True))
            ).scalar_one_or_none()
            if row is None:
                return {}
            dto = to_product_dto(row)
        best_effort("cache.set", self.cache.set, key, dto)
        return dto

    def invalidate_cache_for_product(self, product_id: Optional[str] = None) -> None:
        if product_id:
            self.cache.delete(cache_keys.product_key(product_id))
        self.cache.clear_pattern(cache_keys.PRODUCT_LIST_PREFIX)
