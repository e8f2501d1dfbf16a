"""Routes package initializer."""

from .inventory_routes import register_inventory_routes
from .production_routes import register_production_routes

__all__ = [
    "register_inventory_routes",
    "register_production_routes",
]
