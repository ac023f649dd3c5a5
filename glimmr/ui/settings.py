import sqlite3

import streamlit as st

from glimmr.db import get_all_settings, save_settings
from glimmr.models import MAKING_CHARGE_MODES, SUPPORTED_KARATS


def render(conn: sqlite3.Connection) -> None:
    st.subheader("Pricing Settings")
    st.caption("Applies to metal products. Diamond products use the Diamond Pricing page.")

    current = get_all_settings(conn)

    with st.form("settings_form"):
        col1, col2 = st.columns(2)
        with col1:
            making_charge_mode = st.radio(
                "Making charge",
                options=list(MAKING_CHARGE_MODES),
                index=list(MAKING_CHARGE_MODES).index(current["making_charge_mode"]),
                format_func=lambda mode: "Flat fee (INR)" if mode == "flat" else "Percent of material cost",
                horizontal=True,
            )
            making_charge_value = st.number_input(
                "Making charge value (INR or %)",
                min_value=0.0,
                value=float(current["making_charge_value"]),
                step=0.5,
            )
            gst_rate_pct = st.number_input(
                "GST rate (%)",
                min_value=0.0,
                max_value=100.0,
                value=float(current["gst_rate_pct"]),
                step=0.5,
            )

        with col2:
            default_karat = st.selectbox(
                "Default karat for gold without one",
                options=list(SUPPORTED_KARATS),
                index=list(SUPPORTED_KARATS).index(current["default_karat"]),
            )
            troy_oz_to_grams = st.number_input(
                "Troy oz to grams conversion",
                min_value=0.0001,
                value=float(current["troy_oz_to_grams"]),
                step=0.0001,
                format="%.7f",
            )
            cache_ttl = st.number_input(
                "Rate cache refresh age (seconds)",
                min_value=10,
                max_value=86400,
                value=int(current["price_cache_ttl_seconds"]),
                step=10,
            )

        submitted = st.form_submit_button("Save settings", type="primary")

    if submitted:
        save_settings(
            conn,
            {
                "making_charge_mode": making_charge_mode,
                "making_charge_value": making_charge_value,
                "gst_rate_pct": gst_rate_pct,
                "default_karat": default_karat,
                "troy_oz_to_grams": troy_oz_to_grams,
                "price_cache_ttl_seconds": cache_ttl,
            },
        )
        st.success("Settings saved. Reprice the catalog to apply them to cached prices.")
