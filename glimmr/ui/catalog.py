import sqlite3
from typing import Any

import pandas as pd
import streamlit as st

from glimmr.db import (
    PRODUCT_CSV_COLUMNS,
    add_product,
    cached_breakdown,
    composition_from_row,
    delete_product,
    get_all_settings,
    import_products_from_df,
    list_products,
    update_product,
)
from glimmr.errors import PricingError
from glimmr.formatting import format_inr, price_label
from glimmr.models import MATERIALS, SUPPORTED_KARATS, RateSnapshot
from glimmr.pricing import live_unit_price
from glimmr.providers.metals_api import capture_rate_snapshot
from glimmr.repricing import reprice_products

KARAT_OPTIONS = [None, *SUPPORTED_KARATS]


def _empty_product() -> dict[str, Any]:
    return {
        "name": "",
        "category": "",
        "material": "gold",
        "weight_grams": 0.0,
        "karat": None,
        "diamond_carat": None,
        "diamond_cut": None,
        "diamond_color": None,
        "diamond_clarity": None,
        "is_active": 1,
    }


def _live_price_label(row: sqlite3.Row, rates: RateSnapshot, default_karat: int) -> str:
    try:
        return price_label(live_unit_price(composition_from_row(row), rates, default_karat))
    except (PricingError, ValueError) as exc:
        return f"Invalid: {exc}"


def _grade_index(options: list[str], value: Any) -> int:
    return options.index(value) if value in options else 0


def _product_fields(key: str, product: Any, rates: RateSnapshot) -> dict[str, Any]:
    col1, col2 = st.columns(2)
    with col1:
        name = st.text_input("Name", value=product["name"] or "", key=f"{key}_name")
        category = st.text_input("Category", value=product["category"] or "", key=f"{key}_category")
        material = st.selectbox(
            "Material",
            options=list(MATERIALS),
            index=_grade_index(list(MATERIALS), product["material"]),
            key=f"{key}_material",
        )
        weight = st.number_input(
            "Metal weight (grams)",
            min_value=0.0,
            value=float(product["weight_grams"] or 0),
            step=0.1,
            key=f"{key}_weight",
        )
        karat = st.selectbox(
            "Karat (gold only)",
            options=KARAT_OPTIONS,
            index=_grade_index(KARAT_OPTIONS, product["karat"]),
            format_func=lambda value: "Default" if value is None else f"{value}K",
            key=f"{key}_karat",
        )
        is_active = st.checkbox("Active", value=bool(product["is_active"]), key=f"{key}_active")

    cuts = list(rates.cut_multipliers)
    colors = list(rates.color_multipliers)
    clarities = list(rates.clarity_multipliers)
    with col2:
        has_diamond = st.checkbox(
            "Has diamond",
            value=product["diamond_carat"] is not None,
            key=f"{key}_has_diamond",
        )
        carat = st.number_input(
            "Diamond carat",
            min_value=0.0,
            value=float(product["diamond_carat"] or 0),
            step=0.01,
            key=f"{key}_carat",
        )
        cut = st.selectbox("Cut", cuts, index=_grade_index(cuts, product["diamond_cut"]), key=f"{key}_cut")
        color = st.selectbox(
            "Color", colors, index=_grade_index(colors, product["diamond_color"]), key=f"{key}_color"
        )
        clarity = st.selectbox(
            "Clarity",
            clarities,
            index=_grade_index(clarities, product["diamond_clarity"]),
            key=f"{key}_clarity",
        )

    return {
        "name": name,
        "category": category,
        "material": material,
        "weight_grams": weight,
        "karat": karat,
        "diamond_carat": carat if has_diamond else None,
        "diamond_cut": cut if has_diamond else None,
        "diamond_color": color if has_diamond else None,
        "diamond_clarity": clarity if has_diamond else None,
        "is_active": is_active,
    }


def render(conn: sqlite3.Connection) -> None:
    st.subheader("Product Catalog")

    settings = get_all_settings(conn)
    rates, warning = capture_rate_snapshot(conn)
    if warning:
        st.warning(warning)

    col_a, col_b = st.columns([1, 3])
    with col_a:
        reprice_click = st.button("Reprice catalog", type="primary")
    with col_b:
        diamond_only = st.checkbox("Diamond products only", value=False)

    if reprice_click:
        result = reprice_products(conn, rates, settings, diamond_only=diamond_only)
        st.success(f"Updated {result['updated']} of {result['total']} products.")
        if result["errors"]:
            st.error("Some products could not be priced and are now shown as pending.")
            st.dataframe(pd.DataFrame(result["errors"]), width="stretch", hide_index=True)

    tab1, tab2, tab3 = st.tabs(["Catalog", "Add product", "CSV import/export"])

    with tab1:
        rows = list_products(conn)
        if not rows:
            st.info("No products yet. Add your first product in the next tab.")
        else:
            df = pd.DataFrame(
                [
                    {
                        "id": int(row["id"]),
                        "name": row["name"],
                        "category": row["category"],
                        "material": row["material"],
                        "weight_grams": float(row["weight_grams"] or 0),
                        "karat": row["karat"],
                        "diamond": (
                            f"{row['diamond_carat']}ct {row['diamond_cut']} {row['diamond_color']} {row['diamond_clarity']}"
                            if row["diamond_carat"] is not None
                            else ""
                        ),
                        "live_material_value": _live_price_label(row, rates, settings["default_karat"]),
                        "price": price_label(row["price"]),
                        "active": bool(row["is_active"]),
                    }
                    for row in rows
                ]
            )
            st.dataframe(df, width="stretch", hide_index=True)

            selected_id = st.selectbox(
                "Select product to edit/delete",
                options=[int(row["id"]) for row in rows],
                format_func=lambda pid: f"#{pid} - {next(r['name'] for r in rows if r['id'] == pid)}",
            )
            selected = next(row for row in rows if row["id"] == selected_id)

            breakdown = cached_breakdown(selected)
            if breakdown is None:
                st.caption("Price breakdown: Pricing pending. Reprice the catalog to compute it.")
            else:
                b1, b2, b3, b4, b5 = st.columns(5)
                b1.metric("Metal", format_inr(breakdown.metal_cost))
                b2.metric("Diamond", format_inr(breakdown.diamond_cost))
                b3.metric("Making", format_inr(breakdown.making_charges))
                b4.metric("GST", format_inr(breakdown.gst))
                b5.metric("Final", format_inr(breakdown.final_price))

            with st.form("edit_product_form"):
                edited = _product_fields(f"edit_{selected_id}", selected, rates)
                save_edit = st.form_submit_button("Save changes", type="primary")

            delete_click = st.button("Delete product", type="secondary")

            if save_edit:
                if not edited["name"].strip():
                    st.error("Product name is required.")
                else:
                    update_product(conn, selected_id, edited)
                    st.success("Product updated. Its price is pending until the next reprice.")
                    st.rerun()

            if delete_click:
                delete_product(conn, selected_id)
                st.success("Product deleted.")
                st.rerun()

    with tab2:
        with st.form("add_product_form"):
            new_product = _product_fields("add", _empty_product(), rates)
            submit_add = st.form_submit_button("Add product", type="primary")

        if submit_add:
            if not new_product["name"].strip():
                st.error("Product name is required.")
            else:
                add_product(conn, new_product)
                st.success("Product added.")
                st.rerun()

    with tab3:
        template_df = pd.DataFrame(
            [
                {
                    "name": "Classic Band",
                    "category": "rings",
                    "material": "gold",
                    "weight_grams": 10,
                    "karat": 22,
                    "diamond_carat": None,
                    "diamond_cut": None,
                    "diamond_color": None,
                    "diamond_clarity": None,
                },
                {
                    "name": "Solitaire Pendant",
                    "category": "pendants",
                    "material": "diamond",
                    "weight_grams": 0,
                    "karat": None,
                    "diamond_carat": 0.5,
                    "diamond_cut": "excellent",
                    "diamond_color": "G",
                    "diamond_clarity": "VS1",
                },
            ],
            columns=PRODUCT_CSV_COLUMNS,
        )

        st.download_button(
            "Download CSV template",
            data=template_df.to_csv(index=False).encode("utf-8"),
            file_name="product_catalog_template.csv",
            mime="text/csv",
        )

        uploaded = st.file_uploader("Import products CSV", type=["csv"])
        if uploaded is not None and st.button("Import uploaded CSV"):
            try:
                count = import_products_from_df(conn, pd.read_csv(uploaded))
                st.success(f"Imported {count} products. Reprice the catalog to price them.")
            except (ValueError, KeyError) as exc:
                st.error(f"Failed to import CSV: {exc}")

        rows = list_products(conn)
        if rows:
            export_df = pd.DataFrame([dict(row) for row in rows])
            st.download_button(
                "Export current catalog CSV",
                data=export_df[PRODUCT_CSV_COLUMNS + ["price"]].to_csv(index=False).encode("utf-8"),
                file_name="product_catalog_export.csv",
                mime="text/csv",
            )
