import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from glimmr.logger import get_logger
from glimmr.models import (
    DEFAULT_KARAT,
    MAKING_CHARGE_MODES,
    SUPPORTED_KARATS,
    DiamondSpec,
    MaterialComposition,
    PriceBreakdown,
    PricingPolicy,
)

logger = get_logger(__name__)

DATA_DIR = Path(__file__).resolve().parents[1] / "data"
DB_PATH = DATA_DIR / "glimmr.db"

DEFAULT_SETTINGS: dict[str, str] = {
    "making_charge_mode": "percent",
    "making_charge_value": "10",
    "gst_rate_pct": "3",
    "default_karat": str(DEFAULT_KARAT),
    "troy_oz_to_grams": "31.1034768",
    "price_cache_ttl_seconds": "60",
}

DEFAULT_DIAMOND_PRICING: dict[str, Any] = {
    "base_rate_per_carat": 300000.0,
    "cut_multipliers": {
        "excellent": 1.3,
        "very-good": 1.15,
        "good": 1.0,
        "fair": 0.85,
        "poor": 0.7,
    },
    # D is the top colour grade.
    "color_multipliers": {
        "D": 1.5,
        "E": 1.4,
        "F": 1.3,
        "G": 1.2,
        "H": 1.1,
        "I": 1.0,
        "J": 0.9,
        "K": 0.8,
        "L": 0.7,
        "M": 0.6,
    },
    "clarity_multipliers": {
        "FL": 1.5,
        "IF": 1.4,
        "VVS1": 1.3,
        "VVS2": 1.2,
        "VS1": 1.1,
        "VS2": 1.0,
        "SI1": 0.9,
        "SI2": 0.8,
        "I1": 0.7,
        "I2": 0.6,
        "I3": 0.5,
    },
    "making_charge_pct": 15.0,
    "gst_pct": 3.0,
}

MULTIPLIER_TABLES = ("cut_multipliers", "color_multipliers", "clarity_multipliers")

PRODUCT_CSV_COLUMNS = [
    "name",
    "category",
    "material",
    "weight_grams",
    "karat",
    "diamond_carat",
    "diamond_cut",
    "diamond_color",
    "diamond_clarity",
]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection(db_path: Path | None = None) -> sqlite3.Connection:
    target = db_path or DB_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(target)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    cursor = conn.cursor()

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS metal_rates (
            symbol TEXT PRIMARY KEY,
            price_inr_per_gram REAL NOT NULL,
            fetched_at TEXT NOT NULL,
            provider TEXT NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS rate_fetch_attempts (
            symbol TEXT PRIMARY KEY,
            attempted_at TEXT NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS diamond_pricing (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            base_rate_per_carat REAL NOT NULL,
            cut_multipliers_json TEXT NOT NULL,
            color_multipliers_json TEXT NOT NULL,
            clarity_multipliers_json TEXT NOT NULL,
            making_charge_pct REAL NOT NULL,
            gst_pct REAL NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS products (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            category TEXT NOT NULL,
            material TEXT NOT NULL,
            weight_grams REAL NOT NULL DEFAULT 0,
            karat INTEGER,
            diamond_carat REAL,
            diamond_cut TEXT,
            diamond_color TEXT,
            diamond_clarity TEXT,
            price INTEGER,
            price_breakdown_json TEXT,
            priced_at TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    for key, value in DEFAULT_SETTINGS.items():
        cursor.execute(
            """
            INSERT OR IGNORE INTO settings (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            (key, value, utc_now_iso()),
        )

    conn.commit()


def get_all_settings(conn: sqlite3.Connection) -> dict[str, Any]:
    rows = conn.execute("SELECT key, value FROM settings").fetchall()
    raw = {row["key"]: row["value"] for row in rows}

    def get_float(key: str) -> float:
        try:
            return float(raw.get(key, DEFAULT_SETTINGS[key]))
        except (TypeError, ValueError):
            return float(DEFAULT_SETTINGS[key])

    making_charge_mode = raw.get("making_charge_mode", DEFAULT_SETTINGS["making_charge_mode"])
    if making_charge_mode not in MAKING_CHARGE_MODES:
        making_charge_mode = DEFAULT_SETTINGS["making_charge_mode"]

    default_karat = int(get_float("default_karat"))
    if default_karat not in SUPPORTED_KARATS:
        default_karat = int(DEFAULT_SETTINGS["default_karat"])

    return {
        "making_charge_mode": making_charge_mode,
        "making_charge_value": get_float("making_charge_value"),
        "gst_rate_pct": get_float("gst_rate_pct"),
        "default_karat": default_karat,
        "troy_oz_to_grams": get_float("troy_oz_to_grams"),
        "price_cache_ttl_seconds": int(get_float("price_cache_ttl_seconds")),
    }


def save_settings(conn: sqlite3.Connection, settings: dict[str, Any]) -> None:
    if settings["making_charge_mode"] not in MAKING_CHARGE_MODES:
        raise ValueError("Making charge mode must be 'flat' or 'percent'.")
    if int(settings["default_karat"]) not in SUPPORTED_KARATS:
        raise ValueError(f"Default karat must be one of {SUPPORTED_KARATS}.")

    now = utc_now_iso()
    payload = {
        "making_charge_mode": str(settings["making_charge_mode"]),
        "making_charge_value": str(settings["making_charge_value"]),
        "gst_rate_pct": str(settings["gst_rate_pct"]),
        "default_karat": str(int(settings["default_karat"])),
        "troy_oz_to_grams": str(settings["troy_oz_to_grams"]),
        "price_cache_ttl_seconds": str(int(settings["price_cache_ttl_seconds"])),
    }

    for key, value in payload.items():
        conn.execute(
            """
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, now),
        )
    conn.commit()
    logger.info("Pricing settings saved: %s", payload)


def policy_from_settings(settings: dict[str, Any]) -> PricingPolicy:
    return PricingPolicy(
        making_charge_mode=settings["making_charge_mode"],
        making_charge_value=float(settings["making_charge_value"]),
        gst_rate_pct=float(settings["gst_rate_pct"]),
        default_karat=int(settings["default_karat"]),
    )


def diamond_policy(diamond_config: dict[str, Any], settings: dict[str, Any]) -> PricingPolicy:
    """Diamond-bearing products carry their own making charge and GST rates."""
    return PricingPolicy(
        making_charge_mode="percent",
        making_charge_value=float(diamond_config["making_charge_pct"]),
        gst_rate_pct=float(diamond_config["gst_pct"]),
        default_karat=int(settings["default_karat"]),
    )


def policy_for(
    composition: MaterialComposition,
    settings: dict[str, Any],
    diamond_config: dict[str, Any],
) -> PricingPolicy:
    if composition.diamond is not None:
        return diamond_policy(diamond_config, settings)
    return policy_from_settings(settings)


def get_cached_rates(conn: sqlite3.Connection, symbols: list[str]) -> dict[str, sqlite3.Row]:
    placeholders = ",".join("?" for _ in symbols)
    rows = conn.execute(
        f"SELECT symbol, price_inr_per_gram, fetched_at, provider FROM metal_rates WHERE symbol IN ({placeholders})",
        symbols,
    ).fetchall()
    return {row["symbol"]: row for row in rows}


def save_rate(conn: sqlite3.Connection, symbol: str, price_inr_per_gram: float, provider: str) -> None:
    conn.execute(
        """
        INSERT INTO metal_rates (symbol, price_inr_per_gram, fetched_at, provider)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(symbol)
        DO UPDATE SET
            price_inr_per_gram = excluded.price_inr_per_gram,
            fetched_at = excluded.fetched_at,
            provider = excluded.provider
        """,
        (symbol, price_inr_per_gram, utc_now_iso(), provider),
    )
    conn.commit()


def is_rate_fresh(fetched_at_iso: str, max_age_seconds: int) -> bool:
    try:
        fetched_at = datetime.fromisoformat(fetched_at_iso)
    except ValueError:
        return False
    if fetched_at.tzinfo is None:
        fetched_at = fetched_at.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - fetched_at <= timedelta(seconds=max_age_seconds)


def get_rate_attempts(conn: sqlite3.Connection, symbols: list[str]) -> dict[str, str]:
    placeholders = ",".join("?" for _ in symbols)
    rows = conn.execute(
        f"SELECT symbol, attempted_at FROM rate_fetch_attempts WHERE symbol IN ({placeholders})",
        symbols,
    ).fetchall()
    return {row["symbol"]: row["attempted_at"] for row in rows}


def record_rate_attempts(conn: sqlite3.Connection, symbols: list[str]) -> None:
    """Stamps each symbol with the time a provider was last asked for it, answered or not."""
    now = utc_now_iso()
    for symbol in symbols:
        conn.execute(
            """
            INSERT INTO rate_fetch_attempts (symbol, attempted_at)
            VALUES (?, ?)
            ON CONFLICT(symbol) DO UPDATE SET attempted_at = excluded.attempted_at
            """,
            (symbol, now),
        )
    conn.commit()


def _write_diamond_pricing(conn: sqlite3.Connection, config: dict[str, Any]) -> None:
    conn.execute(
        """
        INSERT INTO diamond_pricing
        (id, base_rate_per_carat, cut_multipliers_json, color_multipliers_json, clarity_multipliers_json,
         making_charge_pct, gst_pct, updated_at)
        VALUES (1, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id)
        DO UPDATE SET
            base_rate_per_carat = excluded.base_rate_per_carat,
            cut_multipliers_json = excluded.cut_multipliers_json,
            color_multipliers_json = excluded.color_multipliers_json,
            clarity_multipliers_json = excluded.clarity_multipliers_json,
            making_charge_pct = excluded.making_charge_pct,
            gst_pct = excluded.gst_pct,
            updated_at = excluded.updated_at
        """,
        (
            config["base_rate_per_carat"],
            json.dumps(config["cut_multipliers"]),
            json.dumps(config["color_multipliers"]),
            json.dumps(config["clarity_multipliers"]),
            config["making_charge_pct"],
            config["gst_pct"],
            utc_now_iso(),
        ),
    )
    conn.commit()


def get_diamond_pricing(conn: sqlite3.Connection) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM diamond_pricing WHERE id = 1").fetchone()
    if row is None:
        _write_diamond_pricing(conn, DEFAULT_DIAMOND_PRICING)
        row = conn.execute("SELECT * FROM diamond_pricing WHERE id = 1").fetchone()

    return {
        "base_rate_per_carat": float(row["base_rate_per_carat"]),
        "cut_multipliers": json.loads(row["cut_multipliers_json"]),
        "color_multipliers": json.loads(row["color_multipliers_json"]),
        "clarity_multipliers": json.loads(row["clarity_multipliers_json"]),
        "making_charge_pct": float(row["making_charge_pct"]),
        "gst_pct": float(row["gst_pct"]),
        "updated_at": row["updated_at"],
    }


def save_diamond_pricing(conn: sqlite3.Connection, updates: dict[str, Any]) -> dict[str, Any]:
    """
    Applies a partial update to the diamond pricing row.

    Multiplier tables are merged grade by grade, so sending {"cut_multipliers":
    {"excellent": 1.4}} keeps every other cut grade as it was.
    """
    config = get_diamond_pricing(conn)

    if updates.get("base_rate_per_carat") is not None:
        config["base_rate_per_carat"] = float(updates["base_rate_per_carat"])
    for table_name in MULTIPLIER_TABLES:
        if updates.get(table_name):
            config[table_name] = {
                **config[table_name],
                **{str(grade): float(value) for grade, value in updates[table_name].items()},
            }
    for key in ("making_charge_pct", "gst_pct"):
        if updates.get(key) is not None:
            config[key] = float(updates[key])

    if config["base_rate_per_carat"] <= 0:
        raise ValueError("Base rate per carat must be positive.")
    for table_name in MULTIPLIER_TABLES:
        for grade, value in config[table_name].items():
            if value <= 0:
                raise ValueError(f"Multiplier for {grade} in {table_name} must be positive.")
    if config["making_charge_pct"] < 0 or config["gst_pct"] < 0:
        raise ValueError("Making charge and GST percentages cannot be negative.")

    _write_diamond_pricing(conn, config)
    logger.info(
        "Diamond pricing updated: base rate %.2f/ct, making %.1f%%, GST %.1f%%",
        config["base_rate_per_carat"],
        config["making_charge_pct"],
        config["gst_pct"],
    )
    return get_diamond_pricing(conn)


def list_products(conn: sqlite3.Connection, active_only: bool = False) -> list[sqlite3.Row]:
    query = "SELECT * FROM products"
    if active_only:
        query += " WHERE is_active = 1"
    return conn.execute(query + " ORDER BY category, name").fetchall()


def get_product(conn: sqlite3.Connection, product_id: int) -> Optional[sqlite3.Row]:
    return conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()


def _product_values(product: dict[str, Any]) -> tuple[Any, ...]:
    return (
        product["name"],
        product["category"],
        str(product["material"]).strip().lower(),
        float(product.get("weight_grams") or 0),
        product.get("karat"),
        product.get("diamond_carat"),
        product.get("diamond_cut") or None,
        product.get("diamond_color") or None,
        product.get("diamond_clarity") or None,
        1 if product.get("is_active", True) else 0,
    )


def add_product(conn: sqlite3.Connection, product: dict[str, Any]) -> int:
    now = utc_now_iso()
    cursor = conn.cursor()
    cursor.execute(
        """
        INSERT INTO products
        (name, category, material, weight_grams, karat, diamond_carat, diamond_cut, diamond_color,
         diamond_clarity, is_active, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (*_product_values(product), now, now),
    )
    conn.commit()
    return int(cursor.lastrowid)


def update_product(conn: sqlite3.Connection, product_id: int, product: dict[str, Any]) -> None:
    # Composition changed, so the cached breakdown no longer applies.
    conn.execute(
        """
        UPDATE products
        SET name = ?, category = ?, material = ?, weight_grams = ?, karat = ?, diamond_carat = ?,
            diamond_cut = ?, diamond_color = ?, diamond_clarity = ?, is_active = ?,
            price = NULL, price_breakdown_json = NULL, priced_at = NULL, updated_at = ?
        WHERE id = ?
        """,
        (*_product_values(product), utc_now_iso(), product_id),
    )
    conn.commit()


def delete_product(conn: sqlite3.Connection, product_id: int) -> None:
    conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
    conn.commit()


def save_product_price(
    conn: sqlite3.Connection,
    product_id: int,
    breakdown: Optional[PriceBreakdown],
) -> None:
    """Caches a computed breakdown on the product, or clears it when None."""
    if breakdown is None:
        conn.execute(
            """
            UPDATE products
            SET price = NULL, price_breakdown_json = NULL, priced_at = NULL
            WHERE id = ?
            """,
            (product_id,),
        )
    else:
        conn.execute(
            """
            UPDATE products
            SET price = ?, price_breakdown_json = ?, priced_at = ?
            WHERE id = ?
            """,
            (breakdown.final_price, json.dumps(breakdown.to_dict()), utc_now_iso(), product_id),
        )
    conn.commit()


def cached_breakdown(row: sqlite3.Row) -> Optional[PriceBreakdown]:
    if not row["price_breakdown_json"]:
        return None
    return PriceBreakdown.from_dict(json.loads(row["price_breakdown_json"]))


def row_has_diamond(row: Any) -> bool:
    diamond_fields = [row["diamond_carat"], row["diamond_cut"], row["diamond_color"], row["diamond_clarity"]]
    return any(value not in (None, "") for value in diamond_fields)


def composition_from_row(row: Any) -> MaterialComposition:
    """
    Builds the pricing input from a product record.

    Grades are normalised the way the catalog stores them: cut lower-case,
    colour and clarity upper-case. Anything still unknown is left for the
    calculator to reject.
    """
    diamond = None
    if row_has_diamond(row):
        diamond = DiamondSpec(
            carat=float(row["diamond_carat"] or 0),
            cut=str(row["diamond_cut"] or "").strip().lower(),
            color=str(row["diamond_color"] or "").strip().upper(),
            clarity=str(row["diamond_clarity"] or "").strip().upper(),
        )

    karat = row["karat"]
    return MaterialComposition(
        material=str(row["material"]).strip().lower(),
        weight=float(row["weight_grams"] or 0),
        karat=int(karat) if karat not in (None, "") else None,
        diamond=diamond,
    )


def import_products_from_df(conn: sqlite3.Connection, df: Any) -> int:
    import pandas as pd

    missing = [column for column in PRODUCT_CSV_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    def optional(value: Any) -> Any:
        return None if pd.isna(value) else value

    inserted = 0
    for _, row in df.iterrows():
        karat = optional(row["karat"])
        carat = optional(row["diamond_carat"])
        add_product(
            conn,
            {
                "name": str(row["name"]).strip(),
                "category": str(row["category"]).strip(),
                "material": str(row["material"]).strip().lower(),
                "weight_grams": float(optional(row["weight_grams"]) or 0),
                "karat": int(karat) if karat is not None else None,
                "diamond_carat": float(carat) if carat is not None else None,
                "diamond_cut": optional(row["diamond_cut"]),
                "diamond_color": optional(row["diamond_color"]),
                "diamond_clarity": optional(row["diamond_clarity"]),
            },
        )
        inserted += 1
    logger.info("Imported %d products from CSV", inserted)
    return inserted
