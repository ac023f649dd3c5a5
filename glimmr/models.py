from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

MATERIALS = ("gold", "silver", "platinum", "diamond", "rose-gold", "white-gold")
GOLD_FAMILY = frozenset({"gold", "rose-gold", "white-gold"})
SUPPORTED_KARATS = (18, 22, 24)
MAKING_CHARGE_MODES = ("flat", "percent")
# Karat assumed for gold-family products whose catalog entry omits one.
DEFAULT_KARAT = 24


@dataclass(frozen=True)
class DiamondSpec:
    carat: float
    cut: str
    color: str
    clarity: str


@dataclass(frozen=True)
class MaterialComposition:
    material: str
    weight: float
    karat: Optional[int] = None
    diamond: Optional[DiamondSpec] = None


@dataclass(frozen=True)
class RateSnapshot:
    """
    Immutable capture of market rates (INR) at a point in time.

    A rate of None means the provider had nothing for that material. The
    multiplier tables are copied on construction so the caller's dicts can
    keep changing without affecting an in-flight calculation.
    """

    gold_per_gram: Optional[float]
    silver_per_gram: Optional[float]
    platinum_per_gram: Optional[float] = None
    diamond_base_rate_per_carat: Optional[float] = None
    timestamp: str = ""
    cut_multipliers: Mapping[str, float] = field(default_factory=dict)
    color_multipliers: Mapping[str, float] = field(default_factory=dict)
    clarity_multipliers: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("cut_multipliers", "color_multipliers", "clarity_multipliers"):
            table = {str(key): float(value) for key, value in dict(getattr(self, name)).items()}
            object.__setattr__(self, name, MappingProxyType(table))


@dataclass(frozen=True)
class PricingPolicy:
    making_charge_mode: str
    making_charge_value: float
    gst_rate_pct: float
    default_karat: int = DEFAULT_KARAT

    def __post_init__(self) -> None:
        if self.making_charge_mode not in MAKING_CHARGE_MODES:
            raise ValueError(
                f"Unsupported making charge mode {self.making_charge_mode!r}. Use 'flat' or 'percent'."
            )
        if self.making_charge_value < 0:
            raise ValueError("Making charge value cannot be negative.")
        if self.gst_rate_pct < 0:
            raise ValueError("GST rate cannot be negative.")
        if self.default_karat not in SUPPORTED_KARATS:
            raise ValueError(f"Default karat must be one of {SUPPORTED_KARATS}.")


@dataclass(frozen=True)
class PriceBreakdown:
    metal_cost: float
    diamond_cost: float
    making_charges: float
    gst: float
    final_price: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "metalCost": self.metal_cost,
            "diamondCost": self.diamond_cost,
            "makingCharges": self.making_charges,
            "gst": self.gst,
            "finalPrice": self.final_price,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PriceBreakdown":
        return cls(
            metal_cost=float(payload["metalCost"]),
            diamond_cost=float(payload["diamondCost"]),
            making_charges=float(payload["makingCharges"]),
            gst=float(payload["gst"]),
            final_price=int(payload["finalPrice"]),
        )
