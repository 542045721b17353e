"""Product registry.

ProductRegistry is the engine's roster of known products. It tracks which
products have been registered and provides lookup by key. ErrorEngine uses it
to decide which products a spike sweep covers and to render display names.

The registry enforces one invariant: product keys must be unique. Two
products with the same key would merge their events, groups, and alerts, so
duplicate registration is rejected immediately.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Product:
    """A product that reports errors to the engine.

    Attributes:
        key: Stable identifier sent as "product" in every event
            (e.g. "storefront").
        display_name: Human-readable name used in alerts and the CLI.
        is_active: Inactive products are kept for history but skipped by
            spike sweeps.
    """

    key: str
    display_name: str
    is_active: bool = True


class ProductRegistry:
    """Tracks registered products and provides lookup by key.

    Internally backed by a dict keyed on product key, which gives O(1)
    lookup for get() without scanning the full list.
    """

    def __init__(self) -> None:
        self._products: dict[str, Product] = {}

    def register(self, product: Product) -> None:
        """Register a product.

        Raises:
            ValueError: If a product with the same key is already registered.
                This is always a configuration error, not a recoverable
                condition.
        """
        if product.key in self._products:
            raise ValueError(
                f"Product '{product.key}' is already registered. "
                "Each product must have a unique key."
            )
        self._products[product.key] = product

    @classmethod
    def from_names(cls, names: dict[str, str]) -> "ProductRegistry":
        """Build a registry from a key -> display name mapping."""
        registry = cls()
        for key, display_name in names.items():
            registry.register(Product(key=key, display_name=display_name))
        return registry

    def get_all(self) -> list[Product]:
        return list(self._products.values())

    def active_keys(self) -> list[str]:
        return [p.key for p in self._products.values() if p.is_active]

    def get(self, key: str) -> Product | None:
        """Look up a product by key.

        Returns None rather than raising, because an unregistered product is
        a valid query result. Events from unregistered products are still
        accepted.
        """
        return self._products.get(key)

    def display_names(self) -> dict[str, str]:
        return {p.key: p.display_name for p in self._products.values()}

    def __len__(self) -> int:
        return len(self._products)
