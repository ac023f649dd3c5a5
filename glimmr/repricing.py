import sqlite3
from typing import Any, Optional

from glimmr.db import (
    composition_from_row,
    get_diamond_pricing,
    list_products,
    policy_for,
    row_has_diamond,
    save_product_price,
)
from glimmr.errors import PricingError
from glimmr.logger import get_logger
from glimmr.models import RateSnapshot
from glimmr.pricing import compute_price

logger = get_logger(__name__)


def reprice_products(
    conn: sqlite3.Connection,
    rates: RateSnapshot,
    settings: dict[str, Any],
    diamond_only: bool = False,
    material: Optional[str] = None,
) -> dict[str, Any]:
    """
    Recomputes and caches the price breakdown of every matching product.

    All products in one run are priced against the same snapshot. A product
    that cannot be priced has its cached price cleared, so storefront pages
    show it as pending rather than at a stale or zero price.
    """
    diamond_config = get_diamond_pricing(conn)
    products = list_products(conn)

    total = 0
    updated = 0
    errors: list[dict[str, Any]] = []

    for row in products:
        if diamond_only and not row_has_diamond(row):
            continue
        if material and str(row["material"]).strip().lower() != material.strip().lower():
            continue

        total += 1
        try:
            composition = composition_from_row(row)
            policy = policy_for(composition, settings, diamond_config)
            breakdown = compute_price(composition, rates, policy)
        except (PricingError, ValueError) as exc:
            save_product_price(conn, int(row["id"]), None)
            errors.append(
                {
                    "product_id": int(row["id"]),
                    "product_name": row["name"],
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                }
            )
            logger.warning("Could not price product #%s (%s): %s", row["id"], row["name"], exc)
            continue

        if breakdown.final_price != row["price"]:
            updated += 1
        save_product_price(conn, int(row["id"]), breakdown)

    logger.info("Repriced %d/%d products against rates from %s", updated, total, rates.timestamp)
    return {"total": total, "updated": updated, "errors": errors}
