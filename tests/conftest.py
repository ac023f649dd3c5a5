import pytest

from glimmr.db import get_connection, init_db
from glimmr.models import PricingPolicy, RateSnapshot


@pytest.fixture
def conn(tmp_path):
    connection = get_connection(tmp_path / "glimmr_test.db")
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture
def rates():
    return RateSnapshot(
        gold_per_gram=6500.0,
        silver_per_gram=85.0,
        platinum_per_gram=3200.0,
        diamond_base_rate_per_carat=50000.0,
        timestamp="2026-10-19T06:00:00+00:00",
        cut_multipliers={"round": 1.0, "princess": 1.1, "excellent": 1.3},
        color_multipliers={"D": 1.2, "G": 1.0},
        clarity_multipliers={"FL": 1.3, "VS1": 1.0},
    )


@pytest.fixture
def flat_policy():
    return PricingPolicy(making_charge_mode="flat", making_charge_value=500, gst_rate_pct=3)


@pytest.fixture
def percent_policy():
    return PricingPolicy(making_charge_mode="percent", making_charge_value=10, gst_rate_pct=3)
