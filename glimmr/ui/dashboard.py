import sqlite3
from datetime import datetime, timedelta, timezone

import pandas as pd
import streamlit as st

from glimmr.formatting import format_inr, format_rate_per_gram
from glimmr.pricing import karat_rate_table
from glimmr.providers.metals_api import SYMBOLS, get_rates_with_cache

METAL_NAMES = {"XAU": "Gold (24K)", "XAG": "Silver", "XPT": "Platinum"}
IST = timezone(timedelta(hours=5, minutes=30))


def _format_ist_timestamp(timestamp_iso: str) -> str:
    try:
        parsed = datetime.fromisoformat(timestamp_iso)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(IST).strftime("%Y-%m-%d %H:%M:%S IST")
    except ValueError:
        return timestamp_iso


def render(conn: sqlite3.Connection) -> None:
    st.subheader("Live Rates")
    st.caption("Latest cached metal rates in INR per gram")

    refresh_now = st.button("Refresh rates now", type="primary")
    rates, warning = get_rates_with_cache(conn, SYMBOLS, force_refresh=refresh_now)

    if warning:
        st.warning(warning)

    rows = []
    for symbol in SYMBOLS:
        row = rates.get(symbol)
        rows.append(
            {
                "Metal": METAL_NAMES[symbol],
                "Rate (INR per gram)": format_rate_per_gram(
                    float(row["price_inr_per_gram"]) if row is not None else None
                ),
                "Fetched at (IST)": _format_ist_timestamp(row["fetched_at"]) if row is not None else "No data",
                "Provider": row["provider"] if row is not None else "-",
            }
        )

    st.dataframe(pd.DataFrame(rows), width="stretch", hide_index=True)

    gold = rates.get("XAU")
    st.markdown("### Gold price per 10 g")
    if gold is None:
        st.info("Pricing pending: no gold rate has been fetched yet.")
    else:
        table = karat_rate_table(float(gold["price_inr_per_gram"]))
        columns = st.columns(len(table))
        for column, (karat, price) in zip(columns, table.items()):
            column.metric(f"{karat}K", format_inr(price))

    st.info(
        "If a refresh fails, the last cached rates are used. "
        "Metals that have never been fetched show as pending rather than zero."
    )
