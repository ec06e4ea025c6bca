"""Estimated market value of recyclable waste, per kilogram."""

from __future__ import annotations

DEFAULT_WASTE_TYPE = "other"

PRICE_PER_KG: dict[str, float] = {
    "plastic": 0.50,
    "paper": 0.10,
    "metal": 2.00,
    "glass": 0.05,
    "electronics": 3.00,
    "cardboard": 0.15,
    DEFAULT_WASTE_TYPE: 0.08,
}


def normalize_waste_type(waste_type: str) -> str:
    return waste_type.strip().lower()


def price_per_kg(waste_type: str) -> float:
    """Return the per-kg rate, falling back to the ``other`` rate."""
    return PRICE_PER_KG.get(normalize_waste_type(waste_type), PRICE_PER_KG[DEFAULT_WASTE_TYPE])


def estimate_value(waste_type: str, weight: float) -> float:
    """Estimated value of *weight* kg of *waste_type*, rounded to cents.

    Non-positive weights are worth nothing.
    """
    if weight <= 0:
        return 0.0
    return round(weight * price_per_kg(waste_type), 2)


def waste_types() -> list[str]:
    """Known waste types in display order (``other`` last)."""
    return [name for name in PRICE_PER_KG if name != DEFAULT_WASTE_TYPE] + [DEFAULT_WASTE_TYPE]
