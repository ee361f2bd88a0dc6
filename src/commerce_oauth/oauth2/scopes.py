# Scope registry: permission identifiers and their expansion rules.
# Created: 2026-10-12
#
# Scopes are "<resource>.<action>" strings plus two composites:
#   <resource>.manage  implies every action on <resource>
#   read_all           implies every "*.read" scope
#   manage_all         implies every scope, registered or not
#
# The registry is a constructed object injected into AuthorizationServer, so
# tests and deployments can swap the table without touching module state.

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

READ_ALL = "read_all"
MANAGE_ALL = "manage_all"
MANAGE_ACTION = "manage"
READ_ACTION = "read"


@dataclass(frozen=True)
class ScopeDefinition:
    scope: str
    description: str
    category: str

    def to_dict(self) -> dict[str, str]:
        return {"scope": self.scope, "description": self.description, "category": self.category}


@dataclass(frozen=True)
class ScopePreset:
    name: str
    description: str
    scopes: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description, "scopes": list(self.scopes)}


def _split(scope: str) -> tuple[str, str] | None:
    resource, sep, action = scope.rpartition(".")
    if not sep or not resource or not action:
        return None
    return resource, action


class ScopeRegistry:
    """Registered scopes, presets and the containment rules between them."""

    def __init__(
        self,
        definitions: Iterable[ScopeDefinition],
        presets: Mapping[str, ScopePreset] | None = None,
        read_all: str = READ_ALL,
        manage_all: str = MANAGE_ALL,
    ):
        self._definitions: dict[str, ScopeDefinition] = {}
        for definition in definitions:
            if definition.scope in self._definitions:
                raise ValueError(f"Duplicate scope: {definition.scope}")
            self._definitions[definition.scope] = definition

        self.read_all = read_all
        self.manage_all = manage_all
        self._presets: dict[str, ScopePreset] = dict(presets or {})

        for key, preset in self._presets.items():
            unknown = self.unknown(preset.scopes)
            if unknown:
                raise ValueError(f"Preset {key!r} references unknown scopes: {unknown}")

    # -- containment ---------------------------------------------------

    def implies(self, granted: str, required: str) -> bool:
        """True if holding *granted* is enough for *required*."""
        if granted == required or granted == self.manage_all:
            return True
        if granted == self.read_all:
            parts = _split(required)
            return parts is not None and parts[1] == READ_ACTION
        g = _split(granted)
        if g is None or g[1] != MANAGE_ACTION:
            return False
        r = _split(required)
        return r is not None and r[0] == g[0]

    def has_scope(self, granted: Iterable[str], required: str) -> bool:
        return any(self.implies(g, required) for g in granted)

    def expand(self, scope: str) -> frozenset[str]:
        """*scope* plus every registered scope it implies."""
        implied = {s for s in self._definitions if self.implies(scope, s)}
        implied.add(scope)
        return frozenset(implied)

    def covers(self, granted: Iterable[str], requested: str) -> bool:
        """True if *granted* already includes everything *requested* expands to.

        Used wherever a set of scopes may only be narrowed: a client requesting
        ``orders.manage`` must hold ``orders.manage`` (or ``manage_all``), not
        merely ``orders.read``.
        """
        granted = list(granted)
        return all(self.has_scope(granted, s) for s in self.expand(requested))

    # -- lookup --------------------------------------------------------

    def is_known(self, scope: str) -> bool:
        return scope in self._definitions

    def unknown(self, scopes: Iterable[str]) -> list[str]:
        return [s for s in scopes if s not in self._definitions]

    def __contains__(self, scope: object) -> bool:
        return scope in self._definitions

    def __iter__(self):
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    # -- projections ---------------------------------------------------

    def all(self) -> dict[str, dict[str, str]]:
        return {scope: d.to_dict() for scope, d in self._definitions.items()}

    def grouped(self) -> dict[str, dict]:
        grouped: dict[str, dict] = {}
        for d in self._definitions.values():
            group = grouped.setdefault(d.category, {"label": d.category.capitalize(), "scopes": []})
            group["scopes"].append(d.to_dict())
        return grouped

    def presets(self) -> dict[str, dict]:
        return {key: p.to_dict() for key, p in self._presets.items()}

    def describe(self, scopes: Iterable[str]) -> list[dict[str, str]]:
        """Consent-screen rows for *scopes*, in the order given."""
        rows = []
        for scope in scopes:
            d = self._definitions.get(scope)
            if d is None:
                rows.append({"scope": scope, "description": scope, "category": "custom"})
            else:
                rows.append(d.to_dict())
        return rows


# fmt: off
DEFAULT_SCOPES: tuple[ScopeDefinition, ...] = (
    ScopeDefinition("store.read", "View store information and settings", "store"),
    ScopeDefinition("store.write", "Update store settings", "store"),

    ScopeDefinition("products.read", "View products, variants, and inventory levels", "products"),
    ScopeDefinition("products.write", "Create and update products and variants", "products"),
    ScopeDefinition("products.delete", "Delete products and variants", "products"),
    ScopeDefinition("products.manage", "Full product management including bulk operations", "products"),

    ScopeDefinition("categories.read", "View product categories", "categories"),
    ScopeDefinition("categories.write", "Create and update categories", "categories"),
    ScopeDefinition("categories.delete", "Delete categories", "categories"),

    ScopeDefinition("orders.read", "View orders and order history", "orders"),
    ScopeDefinition("orders.write", "Update order status and details", "orders"),
    ScopeDefinition("orders.cancel", "Cancel orders", "orders"),
    ScopeDefinition("orders.manage", "Full order management including refunds", "orders"),

    ScopeDefinition("customers.read", "View customer profiles", "customers"),
    ScopeDefinition("customers.write", "Create and update customer accounts", "customers"),
    ScopeDefinition("customers.delete", "Delete customer accounts", "customers"),
    ScopeDefinition("customers.orders", "View customer order history", "customers"),

    ScopeDefinition("carts.read", "View shopping cart contents", "carts"),
    ScopeDefinition("carts.write", "Add, remove, and update cart items", "carts"),

    ScopeDefinition("checkout.write", "Initiate and complete checkout process", "checkout"),
    ScopeDefinition("payments.read", "View payment transactions", "payments"),
    ScopeDefinition("payments.write", "Process payments and refunds", "payments"),

    ScopeDefinition("fulfillment.read", "View shipments and tracking information", "fulfillment"),
    ScopeDefinition("fulfillment.write", "Create shipments and update tracking", "fulfillment"),

    ScopeDefinition("discounts.read", "View discount codes and promotions", "discounts"),
    ScopeDefinition("discounts.write", "Create and update discounts", "discounts"),
    ScopeDefinition("discounts.delete", "Delete discounts", "discounts"),

    ScopeDefinition("analytics.read", "View sales analytics and performance metrics", "analytics"),
    ScopeDefinition("reports.export", "Export reports and data", "analytics"),

    ScopeDefinition("webhooks.read", "View webhook subscriptions", "webhooks"),
    ScopeDefinition("webhooks.write", "Create and manage webhook subscriptions", "webhooks"),

    ScopeDefinition(READ_ALL, "Read-only access to all commerce resources", "special"),
    ScopeDefinition(MANAGE_ALL, "Full access to all commerce resources", "special"),
)

DEFAULT_PRESETS: dict[str, ScopePreset] = {
    "read_only": ScopePreset(
        "Read Only", "View all commerce data without modification", (READ_ALL,),
    ),
    "order_management": ScopePreset(
        "Order Management", "Manage orders and fulfillment",
        ("orders.read", "orders.write", "orders.cancel",
         "fulfillment.read", "fulfillment.write", "customers.read"),
    ),
    "inventory_management": ScopePreset(
        "Inventory Management", "Manage products and stock levels",
        ("products.read", "products.write", "categories.read"),
    ),
    "storefront": ScopePreset(
        "Storefront", "Customer-facing storefront operations",
        ("products.read", "categories.read", "carts.read", "carts.write", "checkout.write"),
    ),
    "analytics": ScopePreset(
        "Analytics", "View and export analytics data",
        ("analytics.read", "reports.export", "orders.read"),
    ),
    "full_access": ScopePreset(
        "Full Access", "Complete access to all commerce features", (MANAGE_ALL,),
    ),
}
# fmt: on


def default_registry() -> ScopeRegistry:
    return ScopeRegistry(DEFAULT_SCOPES, DEFAULT_PRESETS)
