import sqlite3

import pandas as pd
import streamlit as st

from glimmr.db import MULTIPLIER_TABLES, diamond_policy, get_all_settings, get_diamond_pricing, save_diamond_pricing
from glimmr.errors import PricingError
from glimmr.formatting import format_inr
from glimmr.models import DiamondSpec, MaterialComposition
from glimmr.pricing import compute_price, diamond_cost_details
from glimmr.providers.metals_api import capture_rate_snapshot

TABLE_LABELS = {
    "cut_multipliers": "Cut",
    "color_multipliers": "Color",
    "clarity_multipliers": "Clarity",
}


def _render_config_form(conn: sqlite3.Connection, config: dict) -> None:
    with st.form("diamond_pricing_form"):
        col1, col2, col3 = st.columns(3)
        with col1:
            base_rate = st.number_input(
                "Base rate (INR per carat)",
                min_value=1.0,
                value=float(config["base_rate_per_carat"]),
                step=1000.0,
            )
        with col2:
            making_pct = st.number_input(
                "Making charge (%)",
                min_value=0.0,
                max_value=100.0,
                value=float(config["making_charge_pct"]),
                step=0.5,
            )
        with col3:
            gst_pct = st.number_input(
                "GST (%)",
                min_value=0.0,
                max_value=100.0,
                value=float(config["gst_pct"]),
                step=0.5,
            )

        edited_tables: dict[str, pd.DataFrame] = {}
        table_columns = st.columns(len(MULTIPLIER_TABLES))
        for column, table_name in zip(table_columns, MULTIPLIER_TABLES):
            with column:
                st.markdown(f"**{TABLE_LABELS[table_name]} multipliers**")
                edited_tables[table_name] = st.data_editor(
                    pd.DataFrame(
                        [{"grade": grade, "multiplier": value} for grade, value in config[table_name].items()]
                    ),
                    num_rows="dynamic",
                    hide_index=True,
                    key=f"editor_{table_name}",
                )

        submitted = st.form_submit_button("Save diamond pricing", type="primary")

    if submitted:
        updates = {
            "base_rate_per_carat": base_rate,
            "making_charge_pct": making_pct,
            "gst_pct": gst_pct,
        }
        for table_name, df in edited_tables.items():
            cleaned = df.dropna(subset=["grade", "multiplier"])
            updates[table_name] = {
                str(grade).strip(): float(value)
                for grade, value in zip(cleaned["grade"], cleaned["multiplier"])
                if str(grade).strip()
            }
        try:
            save_diamond_pricing(conn, updates)
            st.success("Diamond pricing saved. Reprice diamond products to apply it.")
            st.rerun()
        except ValueError as exc:
            st.error(str(exc))


def render(conn: sqlite3.Connection) -> None:
    st.subheader("Diamond Pricing")
    st.caption("Diamond value = base rate x carat x cut x color x clarity multipliers")

    config = get_diamond_pricing(conn)
    settings = get_all_settings(conn)
    _render_config_form(conn, config)

    st.divider()
    st.markdown("### Price preview")

    rates, warning = capture_rate_snapshot(conn)
    if warning:
        st.warning(warning)

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        carat = st.number_input("Carat", min_value=0.01, value=0.5, step=0.01)
    with col2:
        cut = st.selectbox("Cut", list(rates.cut_multipliers))
    with col3:
        color = st.selectbox("Color", list(rates.color_multipliers))
    with col4:
        clarity = st.selectbox("Clarity", list(rates.clarity_multipliers))

    diamond = DiamondSpec(carat=carat, cut=cut, color=color, clarity=clarity)
    try:
        details = diamond_cost_details(diamond, rates)
        breakdown = compute_price(
            MaterialComposition(material="diamond", weight=0.0, diamond=diamond),
            rates,
            diamond_policy(config, settings),
        )
    except PricingError as exc:
        st.error(f"Pricing pending: {exc}")
        return

    r1, r2, r3 = st.columns(3)
    r1.metric("Base cost", format_inr(details["base_cost"]))
    r2.metric(
        "Multipliers",
        f"{details['cut_multiplier']:.2f} x {details['color_multiplier']:.2f} x {details['clarity_multiplier']:.2f}",
    )
    r3.metric("Diamond cost", format_inr(details["diamond_cost"]))

    r4, r5, r6 = st.columns(3)
    r4.metric("Making charges", format_inr(breakdown.making_charges))
    r5.metric("GST", format_inr(breakdown.gst))
    r6.metric("Final price", format_inr(breakdown.final_price))
