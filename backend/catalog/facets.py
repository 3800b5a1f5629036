"""Facet counts for the catalog sidebar

Each option's count answers "how many gemstones would I see if this value were
the only one picked in its dimension, with everything else kept as is". The
dimension's own selection is therefore stripped before counting, which keeps
the numbers next to unticked boxes meaningful.
"""

from __future__ import annotations
import logging
from typing import Callable, Dict, List, Optional

from .errors import AggregationError, StoreError
from .filters import without_dimension
from .models import CATEGORICAL_DIMENSIONS, FacetOption, FilterState
from .store import CatalogStore

logger = logging.getLogger(__name__)

# Clarity grades sort by quality, best first
CLARITY_ORDER = ["FL", "IF", "VVS1", "VVS2", "VS1", "VS2", "SI1", "SI2", "I1"]
DIAMOND_COLOR_GRADES = ["D", "E", "F", "G", "H", "I", "J", "K", "L", "M"]


def _capitalize(value: str) -> str:
    return value[:1].upper() + value[1:]


def format_color_label(value: str) -> str:
    if value in DIAMOND_COLOR_GRADES:
        return value
    if value.startswith("fancy-"):
        return " ".join(_capitalize(w) for w in value.split("-"))
    return _capitalize(value)


def color_group(value: str) -> str:
    if value in DIAMOND_COLOR_GRADES:
        return "diamond"
    if value.startswith("fancy-"):
        return "fancy"
    return "colored"


def clarity_rank(value: str) -> int:
    # Unknown grades go last
    try:
        return CLARITY_ORDER.index(value)
    except ValueError:
        return len(CLARITY_ORDER)


LABELS: Dict[str, Callable[[str], str]] = {
    "types": _capitalize,
    "colors": format_color_label,
    "cuts": _capitalize,
    "clarities": str,
    "origins": str,
}


def _sort_key(dimension: str) -> Callable[[FacetOption], tuple]:
    if dimension == "clarities":
        return lambda o: (clarity_rank(o.value), o.label.lower())
    return lambda o: (o.label.lower(), o.value)


def build_options(
    dimension: str,
    counts: Dict[str, int],
    selected: frozenset,
    hide_empty: bool = True,
) -> List[FacetOption]:
    """Turn raw value counts into sorted FacetOption entries

    Selected values always appear, even at zero, so they can be unticked.
    Unselected zero-count values are hidden, or kept as disabled when
    ``hide_empty`` is off.
    """
    label = LABELS[dimension]
    options: List[FacetOption] = []
    for value in set(counts) | set(selected):
        count = max(int(counts.get(value, 0)), 0)
        is_selected = value in selected
        if count == 0 and not is_selected and hide_empty:
            continue
        options.append(FacetOption(
            value=value,
            label=label(value),
            count=count,
            selected=is_selected,
            disabled=count == 0 and not is_selected,
            group=color_group(value) if dimension == "colors" else None,
        ))
    options.sort(key=_sort_key(dimension))
    return options


class FacetAggregator:
    def __init__(self, store: CatalogStore, hide_empty: bool = True):
        self.store = store
        self.hide_empty = hide_empty

    async def compute_facet_options(self, filters: FilterState, dimension: str) -> List[FacetOption]:
        if dimension not in CATEGORICAL_DIMENSIONS:
            raise AggregationError(dimension, f"not a facet dimension: {dimension}")
        stripped = without_dimension(filters, dimension)
        try:
            counts = await self.store.count_values(dimension, stripped)
        except StoreError as e:
            raise AggregationError(dimension, str(e)) from e
        return build_options(dimension, counts, getattr(filters, dimension), self.hide_empty)

    async def compute_all(self, filters: FilterState) -> Dict[str, Optional[List[FacetOption]]]:
        """Options for every dimension; a failing dimension becomes None (unknown)"""
        out: Dict[str, Optional[List[FacetOption]]] = {}
        for dimension in CATEGORICAL_DIMENSIONS:
            try:
                out[dimension] = await self.compute_facet_options(filters, dimension)
            except AggregationError as e:
                logger.warning("facet counts for %s unavailable: %s", dimension, e)
                out[dimension] = None
        return out

    async def range_bounds(self, filters: FilterState) -> Dict[str, Optional[Dict[str, float]]]:
        # Slider limits, computed without the slider's own range
        bounds: Dict[str, Optional[Dict[str, float]]] = {}
        for dimension, column in (("price", "price_amount"), ("weight", "weight_carats")):
            try:
                found = await self.store.value_bounds(column, without_dimension(filters, dimension))
            except StoreError as e:
                logger.warning("%s bounds unavailable: %s", dimension, e)
                found = None
            bounds[dimension] = {"min": found[0], "max": found[1]} if found else None
        return bounds
