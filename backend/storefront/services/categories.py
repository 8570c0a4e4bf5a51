"""
Category Service - the tenant's category tree and product membership.

Categories nest at most MAX_DEPTH levels below a root (a root has depth 0).
Siblings are ordered by sort_order; new categories go last. Every lookup is
scoped by tenant_id, so another tenant's category is reported as not found.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, func, delete, insert
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import ConflictError, NotFoundError, ValidationError
from storefront.models import Category, Product, ProductStatus, product_categories
from storefront.services.validation import ensure_valid, validate_category_data

logger = logging.getLogger(__name__)

MAX_DEPTH = 5


class CategoryService:
    def __init__(self, session: AsyncSession):
        self.session = session

    # Tree ------------------------------------------------------------------

    async def create_category(
        self,
        tenant_id: str,
        name: str,
        slug: str,
        description: Optional[str] = None,
        parent_id: Optional[str] = None,
        is_active: bool = True,
    ) -> Category:
        """
        Create a root category, or a child of ``parent_id``.

        Raises:
            ValidationError: Bad name/slug, or the parent is already at MAX_DEPTH.
            ConflictError: The slug is taken within the tenant.
            NotFoundError: The parent is not one of the tenant's categories.
        """
        ensure_valid(validate_category_data(name, slug, description))

        if await self._slug_taken(tenant_id, slug):
            raise ConflictError(f"A category with slug '{slug}' already exists")

        if parent_id is not None:
            parent = await self.get_category(tenant_id, parent_id)
            if await self.depth(parent) >= MAX_DEPTH:
                raise ValidationError.single(
                    "parent_id", f"Categories cannot be nested more than {MAX_DEPTH} levels deep"
                )

        category = Category(
            tenant_id=tenant_id,
            parent_id=parent_id,
            name=name.strip(),
            slug=slug,
            description=description,
            sort_order=await self._next_sort_order(tenant_id, parent_id),
            is_active=is_active,
        )
        self.session.add(category)
        await self.session.flush()

        logger.info(f"Created category {category.id} ({slug}) for tenant {tenant_id}")
        return category

    async def _slug_taken(self, tenant_id: str, slug: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(Category).where(Category.tenant_id == tenant_id, Category.slug == slug)
        )
        return result.scalar_one() > 0

    async def _next_sort_order(self, tenant_id: str, parent_id: Optional[str]) -> int:
        same_parent = Category.parent_id.is_(None) if parent_id is None else Category.parent_id == parent_id
        result = await self.session.execute(
            select(func.max(Category.sort_order)).where(Category.tenant_id == tenant_id, same_parent)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def get_category(self, tenant_id: str, category_id: str) -> Category:
        result = await self.session.execute(
            select(Category).where(Category.id == category_id, Category.tenant_id == tenant_id)
        )
        category = result.scalar_one_or_none()
        if category is None:
            raise NotFoundError("Category", category_id)
        return category

    async def get_by_slug(self, tenant_id: str, slug: str, active_only: bool = False) -> Category:
        result = await self.session.execute(
            select(Category).where(Category.slug == slug, Category.tenant_id == tenant_id)
        )
        category = result.scalar_one_or_none()
        if category is None or (active_only and not category.is_active):
            raise NotFoundError("Category", slug)
        return category

    async def ancestors(self, category: Category) -> List[Category]:
        """Parents of ``category``, root first."""
        chain: List[Category] = []
        parent_id = category.parent_id
        while parent_id is not None:
            parent = await self.session.get(Category, parent_id)
            chain.insert(0, parent)
            parent_id = parent.parent_id
        return chain

    async def depth(self, category: Category) -> int:
        return len(await self.ancestors(category))

    async def full_path(self, category: Category) -> str:
        """Breadcrumb such as ``Clothing > Men > Shirts``."""
        return " > ".join(c.name for c in [*await self.ancestors(category), category])

    async def is_descendant_of(self, category: Category, ancestor_id: str) -> bool:
        return any(a.id == ancestor_id for a in await self.ancestors(category))

    async def _subtree_height(self, category: Category) -> int:
        height = 0
        level = [category.id]
        while True:
            result = await self.session.execute(select(Category.id).where(Category.parent_id.in_(level)))
            level = list(result.scalars().all())
            if not level:
                return height
            height += 1

    async def children(self, tenant_id: str, parent_id: Optional[str], active_only: bool = False) -> List[Category]:
        categories, _ = await self.list_categories(
            tenant_id, parent_id=parent_id, roots_only=parent_id is None, active_only=active_only, limit=None
        )
        return categories

    async def list_categories(
        self,
        tenant_id: str,
        parent_id: Optional[str] = None,
        roots_only: bool = False,
        active_only: bool = False,
        search: Optional[str] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> Tuple[List[Category], int]:
        filters = [Category.tenant_id == tenant_id]
        if parent_id is not None:
            filters.append(Category.parent_id == parent_id)
        elif roots_only:
            filters.append(Category.parent_id.is_(None))
        if active_only:
            filters.append(Category.is_active.is_(True))
        if search:
            filters.append(Category.name.ilike(f"%{search}%"))

        total = (await self.session.execute(
            select(func.count()).select_from(Category).where(*filters)
        )).scalar_one()

        query = select(Category).where(*filters).order_by(Category.sort_order, Category.name).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def update_category(
        self,
        tenant_id: str,
        category_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Category:
        category = await self.get_category(tenant_id, category_id)
        ensure_valid(validate_category_data(
            name if name is not None else category.name, category.slug, description
        ))

        if name is not None:
            category.name = name.strip()
        if description is not None:
            category.description = description
        if is_active is not None:
            category.is_active = is_active
        await self.session.flush()
        return category

    async def update_sort_order(self, tenant_id: str, category_id: str, sort_order: int) -> Category:
        """Move a category to position ``sort_order`` among its siblings and renumber them."""
        if sort_order < 0:
            raise ValidationError.single("sort_order", "Sort order cannot be negative")

        category = await self.get_category(tenant_id, category_id)
        siblings = [c for c in await self.children(tenant_id, category.parent_id) if c.id != category.id]
        siblings.insert(min(sort_order, len(siblings)), category)
        for position, sibling in enumerate(siblings):
            sibling.sort_order = position
        await self.session.flush()
        return category

    async def move_category(self, tenant_id: str, category_id: str, new_parent_id: Optional[str]) -> Category:
        """
        Re-parent a category with its whole subtree. ``None`` makes it a root.

        Raises:
            ValidationError: The target is the category itself or one of its
                descendants, or the subtree would end up deeper than MAX_DEPTH.
        """
        category = await self.get_category(tenant_id, category_id)
        if new_parent_id == category.parent_id:
            return category

        if new_parent_id is not None:
            parent = await self.get_category(tenant_id, new_parent_id)
            if parent.id == category.id or await self.is_descendant_of(parent, category.id):
                raise ValidationError.single(
                    "parent_id", "A category cannot be moved under itself or one of its subcategories"
                )
            if await self.depth(parent) + 1 + await self._subtree_height(category) > MAX_DEPTH:
                raise ValidationError.single(
                    "parent_id", f"Categories cannot be nested more than {MAX_DEPTH} levels deep"
                )

        category.sort_order = await self._next_sort_order(tenant_id, new_parent_id)
        category.parent_id = new_parent_id
        await self.session.flush()

        logger.info(f"Moved category {category_id} under {new_parent_id or 'root'}")
        return category

    async def delete_category(self, tenant_id: str, category_id: str) -> None:
        """
        Raises:
            ConflictError: The category still has subcategories or products.
        """
        category = await self.get_category(tenant_id, category_id)

        children = (await self.session.execute(
            select(func.count()).select_from(Category).where(Category.parent_id == category.id)
        )).scalar_one()
        if children:
            raise ConflictError(f"Category '{category.slug}' has {children} subcategories")

        products = (await self.session.execute(
            select(func.count()).select_from(product_categories).where(
                product_categories.c.category_id == category.id
            )
        )).scalar_one()
        if products:
            raise ConflictError(f"Category '{category.slug}' still contains {products} products")

        await self.session.delete(category)
        await self.session.flush()
        logger.info(f"Deleted category {category_id} for tenant {tenant_id}")

    # Membership ------------------------------------------------------------

    async def _get_product(self, tenant_id: str, product_id: str) -> Product:
        result = await self.session.execute(
            select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    async def assign_product(self, tenant_id: str, category_id: str, product_id: str) -> bool:
        """
        Put a product into a category. Both must belong to the tenant.

        Returns False when the product was already in the category.
        """
        category = await self.get_category(tenant_id, category_id)
        product = await self._get_product(tenant_id, product_id)

        existing = (await self.session.execute(
            select(func.count()).select_from(product_categories).where(
                product_categories.c.category_id == category.id,
                product_categories.c.product_id == product.id,
            )
        )).scalar_one()
        if existing:
            return False

        await self.session.execute(
            insert(product_categories).values(category_id=category.id, product_id=product.id)
        )
        logger.info(f"Added product {product_id} to category {category_id}")
        return True

    async def remove_product(self, tenant_id: str, category_id: str, product_id: str) -> bool:
        """Returns False when the product was not in the category."""
        category = await self.get_category(tenant_id, category_id)
        result = await self.session.execute(
            delete(product_categories).where(
                product_categories.c.category_id == category.id,
                product_categories.c.product_id == product_id,
            )
        )
        return result.rowcount > 0

    async def list_products(
        self,
        tenant_id: str,
        category_id: str,
        active_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Product], int]:
        category = await self.get_category(tenant_id, category_id)
        filters = [
            Product.tenant_id == tenant_id,
            Product.id.in_(
                select(product_categories.c.product_id).where(product_categories.c.category_id == category.id)
            ),
        ]
        if active_only:
            filters.append(Product.status == ProductStatus.ACTIVE.value)

        total = (await self.session.execute(
            select(func.count()).select_from(Product).where(*filters)
        )).scalar_one()

        result = await self.session.execute(
            select(Product).where(*filters).order_by(Product.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total

    async def categories_for_product(self, tenant_id: str, product_id: str) -> List[Category]:
        product = await self._get_product(tenant_id, product_id)
        result = await self.session.execute(
            select(Category).where(
                Category.tenant_id == tenant_id,
                Category.id.in_(
                    select(product_categories.c.category_id).where(product_categories.c.product_id == product.id)
                ),
            ).order_by(Category.sort_order, Category.name)
        )
        return list(result.scalars().all())
