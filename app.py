from pathlib import Path

import streamlit as st
from dotenv import load_dotenv

from glimmr.db import get_connection, init_db
from glimmr.ui import catalog, dashboard, diamond_pricing, settings


# Load environment variables from local .env file.
load_dotenv(dotenv_path=Path(__file__).parent / ".env")


st.set_page_config(page_title="Glimmr Pricing", page_icon="💎", layout="wide")


def main() -> None:
    st.title("💎 Glimmr Pricing")
    st.caption("Live gold, silver and diamond pricing for the storefront catalog")

    conn = get_connection()
    init_db(conn)

    page = st.sidebar.radio(
        "Navigate",
        [
            "Live Rates",
            "Product Catalog",
            "Diamond Pricing",
            "Settings",
        ],
    )

    if page == "Live Rates":
        dashboard.render(conn)
    elif page == "Product Catalog":
        catalog.render(conn)
    elif page == "Diamond Pricing":
        diamond_pricing.render(conn)
    elif page == "Settings":
        settings.render(conn)


if __name__ == "__main__":
    main()
