"""
Catalog access for the commission engine.

The host platform owns products, categories and vendor accounts. The engine
only needs two read-only lookups, expressed by CatalogProvider.
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional


class CatalogProvider(ABC):
    """Read-only view of the host catalog."""

    @abstractmethod
    async def get_product_categories(self, product_id: int) -> List[int]:
        """Category ids of a product. Empty list when it has none."""
        pass

    @abstractmethod
    async def get_product_owner(self, product_id: int) -> Optional[int]:
        """Vendor (owning account) of a product, or None if unknown."""
        pass


class StaticCatalog(CatalogProvider):
    """
    In-memory catalog.

    Suitable for hosts that preload product data and for tests.
    """

    def __init__(
        self,
        owners: Optional[Dict[int, int]] = None,
        categories: Optional[Dict[int, Iterable[int]]] = None,
    ):
        self._owners: Dict[int, int] = dict(owners or {})
        self._categories: Dict[int, List[int]] = {
            product_id: list(category_ids)
            for product_id, category_ids in (categories or {}).items()
        }

    def add_product(self, product_id: int, vendor_id: Optional[int], category_ids: Iterable[int] = ()) -> None:
        if vendor_id is not None:
            self._owners[product_id] = vendor_id
        self._categories[product_id] = list(category_ids)

    async def get_product_categories(self, product_id: int) -> List[int]:
        return list(self._categories.get(product_id, []))

    async def get_product_owner(self, product_id: int) -> Optional[int]:
        return self._owners.get(product_id)
