"""Entity types that accept changesets, and the rules their deltas must satisfy."""

from changeflow.core.entity_registry import (
    EntityRegistry,
    SqlAlchemyEntityRepository,
    max_length,
    non_negative,
    one_of,
    required,
)
from changeflow.models.product import Product

PRODUCT_STATUSES = ["active", "draft", "archived"]


def build_entity_registry() -> EntityRegistry:
    registry = EntityRegistry()
    registry.register(
        "product",
        SqlAlchemyEntityRepository(Product),
        rules=[
            required("name"),
            max_length("name", 255),
            non_negative("price"),
            non_negative("stock"),
            max_length("currency", 3),
            one_of("status", PRODUCT_STATUSES),
        ],
    )
    return registry


entity_registry = build_entity_registry()


def get_entity_registry() -> EntityRegistry:
    return entity_registry
