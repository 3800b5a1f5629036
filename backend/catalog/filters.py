"""Filter state operations

Every helper here returns a new FilterState and leaves its input alone, so
callers can compare the old and new values to decide whether to refetch.
"""

from __future__ import annotations
from typing import Dict, Optional, Union
import pandas as pd
from pydantic import ValidationError

from .errors import FilterValueError
from .models import (
    CATEGORICAL_DIMENSIONS,
    DEFAULT_CURRENCY,
    DEFAULT_SORT_DIRECTION,
    FLAG_NAMES,
    FilterState,
    PriceRange,
    WeightRange,
)

# Store column backing each categorical dimension and each flag
DIMENSION_COLUMNS: Dict[str, str] = {
    "types": "type",
    "colors": "color",
    "cuts": "cut",
    "clarities": "clarity",
    "origins": "origin",
}
FLAG_COLUMNS: Dict[str, str] = {
    "in_stock_only": "in_stock",
    "has_images": "has_images",
    "has_certification": "has_certification",
    "has_ai_analysis": "has_ai_analysis",
}
SEARCH_COLUMNS = ["serial_number", "internal_code", "type", "color", "cut"]

EMPTY_FILTERS = FilterState()


def _replace(state: FilterState, **changes) -> FilterState:
    # Rebuild through the constructor so validation runs on the new values
    data = dict(state)
    data.update(changes)
    try:
        return FilterState(**data)
    except ValidationError as e:
        raise FilterValueError(str(e)) from e


def reset() -> FilterState:
    return EMPTY_FILTERS


def toggle_categorical_value(state: FilterState, dimension: str, value: str) -> FilterState:
    if dimension not in CATEGORICAL_DIMENSIONS:
        raise FilterValueError(f"unknown dimension: {dimension}")
    value = (value or "").strip()
    if not value:
        raise FilterValueError("cannot toggle an empty value")
    current = getattr(state, dimension)
    if value in current:
        updated = current - {value}
    else:
        updated = current | {value}
    return _replace(state, **{dimension: updated})


def set_range(
    state: FilterState,
    dimension: str,
    min_value: Optional[Union[int, float]],
    max_value: Optional[Union[int, float]],
    currency: Optional[str] = None,
) -> FilterState:
    """Set or clear a numeric range

    Passing None for both bounds removes the constraint
    """
    if dimension not in ("price", "weight"):
        raise FilterValueError(f"unknown range dimension: {dimension}")
    field = f"{dimension}_range"
    if min_value is None and max_value is None:
        return _replace(state, **{field: None})
    if min_value is None or max_value is None:
        raise FilterValueError(f"{dimension} range needs both bounds")
    try:
        if dimension == "price":
            if int(min_value) != min_value or int(max_value) != max_value:
                raise FilterValueError("price bounds are whole minor units")
            rng = PriceRange(min=int(min_value), max=int(max_value), currency=currency or DEFAULT_CURRENCY)
        else:
            rng = WeightRange(min=float(min_value), max=float(max_value))
    except ValidationError as e:
        raise FilterValueError(str(e)) from e
    return _replace(state, **{field: rng})


def set_flag(state: FilterState, name: str, enabled: bool) -> FilterState:
    if name not in FLAG_NAMES:
        raise FilterValueError(f"unknown flag: {name}")
    return _replace(state, **{name: bool(enabled)})


def set_search(state: FilterState, text: Optional[str]) -> FilterState:
    return _replace(state, search=text)


def set_sort(state: FilterState, field: str, direction: str = DEFAULT_SORT_DIRECTION) -> FilterState:
    return _replace(state, sort_by=field, sort_direction=direction)


def without_dimension(state: FilterState, dimension: str) -> FilterState:
    """Drop one dimension's constraint, leaving every other filter in place"""
    if dimension in CATEGORICAL_DIMENSIONS:
        return _replace(state, **{dimension: frozenset()})
    if dimension in ("price", "weight"):
        return _replace(state, **{f"{dimension}_range": None})
    if dimension in FLAG_NAMES:
        return _replace(state, **{dimension: False})
    if dimension == "search":
        return _replace(state, search=None)
    raise FilterValueError(f"unknown dimension: {dimension}")


def active_filter_count(state: FilterState) -> int:
    # Sorting is a presentation choice, not a filter
    count = 1 if state.search else 0
    count += sum(1 for dim in CATEGORICAL_DIMENSIONS if getattr(state, dim))
    count += int(state.price_range is not None) + int(state.weight_range is not None)
    count += sum(1 for flag in FLAG_NAMES if getattr(state, flag))
    return count


def has_active_filters(state: FilterState) -> bool:
    return active_filter_count(state) > 0


def apply_filters(df: pd.DataFrame, f: FilterState) -> pd.DataFrame:
    # Filter the dataframe based on the shopper's constraints
    out = df
    if f.search:
        hit = pd.Series(False, index=out.index)
        for col in SEARCH_COLUMNS:
            if col in out.columns:
                hit |= out[col].astype(str).str.contains(f.search, case=False, regex=False, na=False)
        out = out[hit]
    for dim, col in DIMENSION_COLUMNS.items():
        values = getattr(f, dim)
        if values:
            out = out[out[col].isin(values)]
    if f.price_range is not None:
        out = out[out["price_amount"].between(f.price_range.min, f.price_range.max)]
    if f.weight_range is not None:
        out = out[out["weight_carats"].between(f.weight_range.min, f.weight_range.max)]
    for flag, col in FLAG_COLUMNS.items():
        if getattr(f, flag):
            out = out[out[col]]
    return out


# Presets for common searches, shown as one-click shortcuts in the catalog
QUICK_FILTERS: Dict[str, Dict[str, object]] = {
    "premium-diamonds": {
        "label": "Premium Diamonds",
        "description": "High-quality diamonds with excellent cuts",
        "filters": FilterState(
            types={"diamond"},
            colors={"D", "E", "F", "G"},
            cuts={"round", "princess", "emerald"},
            clarities={"FL", "IF", "VVS1", "VVS2"},
            in_stock_only=True,
            sort_by="price_amount",
            sort_direction="desc",
        ),
    },
    "colored-gemstones": {
        "label": "Colored Gemstones",
        "description": "Beautiful colored stones",
        "filters": FilterState(
            types={"ruby", "emerald", "sapphire", "tanzanite"},
            in_stock_only=True,
            sort_by="weight_carats",
            sort_direction="desc",
        ),
    },
    "investment-grade": {
        "label": "Investment Grade",
        "description": "High-value gems for investment",
        "filters": FilterState(
            price_range=PriceRange(min=100000000, max=999999999),
            has_certification=True,
            in_stock_only=True,
            sort_by="price_amount",
            sort_direction="desc",
        ),
    },
    "under-100k": {
        "label": "Under $100k",
        "description": "Affordable luxury stones",
        "filters": FilterState(
            price_range=PriceRange(min=0, max=10000000),
            in_stock_only=True,
            sort_by="price_amount",
            sort_direction="asc",
        ),
    },
}

__all__ = [
    "DIMENSION_COLUMNS", "FLAG_COLUMNS", "EMPTY_FILTERS",
    "reset", "toggle_categorical_value", "set_range",
    "set_flag", "set_search", "set_sort", "without_dimension",
    "active_filter_count", "has_active_filters", "apply_filters", "QUICK_FILTERS",
]
