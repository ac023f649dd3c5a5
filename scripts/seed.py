"""
Initialises the local SQLite database, default settings and the diamond
pricing row. With --sample-products a small demo catalog is added too.
"""

import argparse

from glimmr.db import add_product, get_connection, get_diamond_pricing, init_db, list_products

SAMPLE_PRODUCTS = [
    {"name": "Classic Gold Band", "category": "rings", "material": "gold", "weight_grams": 10, "karat": 22},
    {"name": "Rose Gold Stud", "category": "earrings", "material": "rose-gold", "weight_grams": 3.5, "karat": 18},
    {"name": "Silver Bangle", "category": "bangles", "material": "silver", "weight_grams": 25},
    {
        "name": "Solitaire Pendant",
        "category": "pendants",
        "material": "diamond",
        "weight_grams": 0,
        "diamond_carat": 0.5,
        "diamond_cut": "excellent",
        "diamond_color": "G",
        "diamond_clarity": "VS1",
    },
    {
        "name": "Halo Engagement Ring",
        "category": "rings",
        "material": "white-gold",
        "weight_grams": 4.2,
        "karat": 18,
        "diamond_carat": 1.0,
        "diamond_cut": "very-good",
        "diamond_color": "F",
        "diamond_clarity": "VVS2",
    },
]


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--sample-products", action="store_true", help="add a demo catalog if empty")
    args = parser.parse_args()

    conn = get_connection()
    init_db(conn)
    get_diamond_pricing(conn)

    if args.sample_products and not list_products(conn):
        for product in SAMPLE_PRODUCTS:
            add_product(conn, product)
        print(f"Added {len(SAMPLE_PRODUCTS)} sample products.")

    print("Database initialised successfully.")


if __name__ == "__main__":
    main()
