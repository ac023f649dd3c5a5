import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

from glimmr.errors import InvalidComposition, MissingRate, UnknownGrade
from glimmr.models import (
    DEFAULT_KARAT,
    GOLD_FAMILY,
    MATERIALS,
    SUPPORTED_KARATS,
    DiamondSpec,
    MaterialComposition,
    PriceBreakdown,
    PricingPolicy,
    RateSnapshot,
)


def round_rupees(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _validate_carat(carat: float) -> None:
    if not math.isfinite(carat) or carat <= 0:
        raise InvalidComposition(f"Diamond carat must be a positive finite number, got {carat!r}.")


def _validate(composition: MaterialComposition) -> None:
    if composition.material not in MATERIALS:
        raise InvalidComposition(f"Unknown material: {composition.material!r}")

    if not math.isfinite(composition.weight):
        raise InvalidComposition(f"Weight must be a finite number, got {composition.weight!r}.")
    if composition.weight < 0:
        raise InvalidComposition("Weight cannot be negative.")
    # Only a loose diamond may come without metal weight.
    if composition.material != "diamond" and composition.weight <= 0:
        raise InvalidComposition(f"{composition.material} product needs a positive weight.")

    if composition.material == "diamond" and composition.diamond is None:
        raise InvalidComposition("Diamond product is missing its diamond details.")
    if composition.diamond is not None:
        _validate_carat(composition.diamond.carat)


def _purity(composition: MaterialComposition, default_karat: int) -> float:
    if composition.material not in GOLD_FAMILY:
        return 1.0
    karat = composition.karat if composition.karat is not None else default_karat
    if karat not in SUPPORTED_KARATS:
        raise InvalidComposition(
            f"Unsupported karat {karat}. Use one of {', '.join(str(k) for k in SUPPORTED_KARATS)}."
        )
    return karat / 24


def _require_rate(value: Optional[float], rate_name: str, material: str) -> float:
    if value is None or value <= 0:
        raise MissingRate(rate_name, material)
    return value


def _metal_cost(composition: MaterialComposition, rates: RateSnapshot, default_karat: int) -> float:
    material = composition.material
    if material == "diamond":
        return 0.0

    if material in GOLD_FAMILY:
        per_gram = _require_rate(rates.gold_per_gram, "gold_per_gram", material)
    elif material == "silver":
        per_gram = _require_rate(rates.silver_per_gram, "silver_per_gram", material)
    else:
        per_gram = _require_rate(rates.platinum_per_gram, "platinum_per_gram", material)

    return per_gram * composition.weight * _purity(composition, default_karat)


def _multiplier(table: Mapping[str, float], dimension: str, grade: str) -> float:
    try:
        return table[grade]
    except KeyError:
        raise UnknownGrade(dimension, grade) from None


def diamond_cost_details(diamond: DiamondSpec, rates: RateSnapshot) -> dict[str, Any]:
    """
    Values a single diamond against the snapshot's base rate and grade tables.

    Grades scale the base cost multiplicatively, so moving one grade by a
    factor k moves the diamond cost by exactly k.
    """
    _validate_carat(diamond.carat)

    base_rate = _require_rate(
        rates.diamond_base_rate_per_carat, "diamond_base_rate_per_carat", "diamond"
    )
    cut_multiplier = _multiplier(rates.cut_multipliers, "cut", diamond.cut)
    color_multiplier = _multiplier(rates.color_multipliers, "color", diamond.color)
    clarity_multiplier = _multiplier(rates.clarity_multipliers, "clarity", diamond.clarity)

    base_cost = base_rate * diamond.carat
    return {
        "carat": diamond.carat,
        "cut": diamond.cut,
        "color": diamond.color,
        "clarity": diamond.clarity,
        "base_rate_per_carat": base_rate,
        "base_cost": base_cost,
        "cut_multiplier": cut_multiplier,
        "color_multiplier": color_multiplier,
        "clarity_multiplier": clarity_multiplier,
        "diamond_cost": base_cost * cut_multiplier * color_multiplier * clarity_multiplier,
    }


def _diamond_cost(composition: MaterialComposition, rates: RateSnapshot) -> float:
    if composition.diamond is None:
        return 0.0
    return diamond_cost_details(composition.diamond, rates)["diamond_cost"]


def _making_charges(policy: PricingPolicy, material_cost: float) -> float:
    if policy.making_charge_mode == "flat":
        return policy.making_charge_value
    return material_cost * (policy.making_charge_value / 100)


def compute_price(
    composition: MaterialComposition,
    rates: RateSnapshot,
    policy: PricingPolicy,
) -> PriceBreakdown:
    _validate(composition)

    metal_cost = _metal_cost(composition, rates, policy.default_karat)
    diamond_cost = _diamond_cost(composition, rates)
    making_charges = _making_charges(policy, metal_cost + diamond_cost)
    subtotal = metal_cost + diamond_cost + making_charges
    gst = subtotal * (policy.gst_rate_pct / 100)

    return PriceBreakdown(
        metal_cost=metal_cost,
        diamond_cost=diamond_cost,
        making_charges=making_charges,
        gst=gst,
        final_price=round_rupees(subtotal + gst),
    )


def live_unit_price(
    composition: MaterialComposition,
    rates: Optional[RateSnapshot],
    default_karat: int = DEFAULT_KARAT,
) -> Optional[int]:
    """
    Material value only (metal plus diamond, no making charges or GST).

    Returns None when the snapshot cannot price the material so listings can
    show a placeholder instead of a zero.
    """
    if rates is None:
        return None
    _validate(composition)
    try:
        material_cost = _metal_cost(composition, rates, default_karat) + _diamond_cost(
            composition, rates
        )
    except MissingRate:
        return None
    return round_rupees(material_cost)


def karat_rate_table(gold_per_gram: float, grams: float = 10.0) -> dict[int, int]:
    return {
        karat: round_rupees(gold_per_gram * grams * (karat / 24))
        for karat in sorted(SUPPORTED_KARATS, reverse=True)
    }
