"""Query string codec for the catalog filters

The browser address bar is the shareable copy of a FilterState. Encoding
leaves out anything unconstrained so links stay short, and decoding never
fails: unknown keys and values that do not parse are dropped one by one.
"""

from __future__ import annotations
import asyncio
import logging
import re
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlencode

import numpy as np
from pydantic import ValidationError

from .models import (
    CURRENCY_RE,
    DEFAULT_CURRENCY,
    DEFAULT_SORT_DIRECTION,
    DEFAULT_SORT_FIELD,
    FilterState,
    PriceRange,
    WeightRange,
)

logger = logging.getLogger(__name__)

# URL key for each categorical dimension
CATEGORICAL_KEYS: Dict[str, str] = {
    "types": "types",
    "colors": "colors",
    "cuts": "cuts",
    "clarities": "clarities",
    "origins": "origins",
}
# URL key for each boolean flag
FLAG_KEYS: Dict[str, str] = {
    "in_stock_only": "inStock",
    "has_images": "hasImages",
    "has_certification": "certified",
    "has_ai_analysis": "aiAnalysis",
}
FILTER_PARAM_KEYS = frozenset(
    ["search", "priceMin", "priceMax", "price", "currency", "weightMin", "weightMax", "weight", "sort", "dir"]
    + list(CATEGORICAL_KEYS.values())
    + list(FLAG_KEYS.values())
)

# Bounds used when a link only carries one side of a range
DEFAULT_PRICE_BOUNDS = (0, 5000000)
DEFAULT_WEIGHT_BOUNDS = (0.0, 20.0)

DEFAULT_DEBOUNCE_SECONDS = 0.1

SORT_FIELDS = ("created_at", "price_amount", "weight_carats", "type")
_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}
_INT_RE = re.compile(r"^\s*(\d+)\s*$")
_FLOAT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*$")
_INT_PAIR_RE = re.compile(r"^\s*(\d+)\s*[-,]\s*(\d+)\s*$")
_FLOAT_PAIR_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*[-,]\s*(\d+(?:\.\d+)?)\s*$")


def _format_number(v: float) -> str:
    # Shortest exact positional form, never scientific notation
    return np.format_float_positional(float(v), trim="-")


def encode_filters(state: FilterState) -> str:
    """Serialize a FilterState into a minimal, key-sorted query string"""
    params: Dict[str, str] = {}
    if state.search:
        params["search"] = state.search
    for dim, key in CATEGORICAL_KEYS.items():
        values = getattr(state, dim)
        if values:
            params[key] = ",".join(sorted(values))
    if state.price_range is not None:
        params["priceMin"] = str(state.price_range.min)
        params["priceMax"] = str(state.price_range.max)
        if state.price_range.currency != DEFAULT_CURRENCY:
            params["currency"] = state.price_range.currency
    if state.weight_range is not None:
        params["weightMin"] = _format_number(state.weight_range.min)
        params["weightMax"] = _format_number(state.weight_range.max)
    for flag, key in FLAG_KEYS.items():
        if getattr(state, flag):
            params[key] = "true"
    if state.sort_by != DEFAULT_SORT_FIELD:
        params["sort"] = state.sort_by
    if state.sort_direction != DEFAULT_SORT_DIRECTION:
        params["dir"] = state.sort_direction
    return urlencode(sorted(params.items()), safe=",", quote_via=quote)


def _split_values(raw: str) -> frozenset:
    return frozenset(v.strip() for v in raw.split(",") if v.strip())


def _parse_bool(key: str, raw: str) -> Optional[bool]:
    t = raw.strip().lower()
    if t in _TRUE:
        return True
    if t in _FALSE:
        return False
    logger.debug("dropping malformed flag %s=%r", key, raw)
    return None


def _parse_bounds(
    params: Dict[str, str],
    min_key: str,
    max_key: str,
    combined_key: str,
    single_re: "re.Pattern[str]",
    pair_re: "re.Pattern[str]",
    defaults: Tuple[float, float],
) -> Optional[Tuple[str, str]]:
    # Separate min/max keys win over the combined "a-b" form
    raw_min = params.get(min_key)
    raw_max = params.get(max_key)
    if raw_min is not None or raw_max is not None:
        lo = single_re.match(raw_min) if raw_min is not None else None
        hi = single_re.match(raw_max) if raw_max is not None else None
        if (raw_min is not None and lo is None) or (raw_max is not None and hi is None):
            logger.debug("dropping malformed range %s=%r %s=%r", min_key, raw_min, max_key, raw_max)
            return None
        return (
            lo.group(1) if lo else str(defaults[0]),
            hi.group(1) if hi else str(defaults[1]),
        )
    raw = params.get(combined_key)
    if raw is None:
        return None
    m = pair_re.match(raw)
    if not m:
        logger.debug("dropping malformed range %s=%r", combined_key, raw)
        return None
    return m.group(1), m.group(2)


def decode_filters(query: str) -> FilterState:
    """Parse a query string into a FilterState, dropping anything malformed"""
    params: Dict[str, str] = {}
    for key, value in parse_qsl((query or "").lstrip("?"), keep_blank_values=False):
        if key not in FILTER_PARAM_KEYS:
            logger.debug("ignoring unknown query parameter %s", key)
            continue
        params[key] = value

    fields: Dict[str, object] = {}
    if params.get("search", "").strip():
        fields["search"] = params["search"]

    for dim, key in CATEGORICAL_KEYS.items():
        if key in params:
            values = _split_values(params[key])
            if values:
                fields[dim] = values

    price = _parse_bounds(params, "priceMin", "priceMax", "price", _INT_RE, _INT_PAIR_RE, DEFAULT_PRICE_BOUNDS)
    if price is not None:
        currency = params.get("currency", DEFAULT_CURRENCY).strip().upper()
        if not CURRENCY_RE.match(currency):
            logger.debug("dropping malformed currency %r", params.get("currency"))
            currency = DEFAULT_CURRENCY
        try:
            fields["price_range"] = PriceRange(min=int(price[0]), max=int(price[1]), currency=currency)
        except ValidationError:
            logger.debug("dropping invalid price range %s", price)

    weight = _parse_bounds(params, "weightMin", "weightMax", "weight", _FLOAT_RE, _FLOAT_PAIR_RE, DEFAULT_WEIGHT_BOUNDS)
    if weight is not None:
        try:
            fields["weight_range"] = WeightRange(min=float(weight[0]), max=float(weight[1]))
        except ValidationError:
            logger.debug("dropping invalid weight range %s", weight)

    for flag, key in FLAG_KEYS.items():
        if key in params and _parse_bool(key, params[key]):
            fields[flag] = True

    sort = params.get("sort")
    if sort is not None:
        if sort in SORT_FIELDS:
            fields["sort_by"] = sort
        else:
            logger.debug("dropping unknown sort field %r", sort)
    direction = params.get("dir")
    if direction is not None:
        if direction in ("asc", "desc"):
            fields["sort_direction"] = direction
        else:
            logger.debug("dropping unknown sort direction %r", direction)

    return FilterState(**fields)


class FilterCodec:
    """Encoder that keeps the address bar on the last good value

    A state that no longer validates (for example one assembled with
    ``model_construct``) is never written out; the previous query string is
    returned instead.
    """

    def __init__(self, last_valid: str = ""):
        self.last_valid = last_valid

    def encode(self, state: FilterState) -> str:
        try:
            checked = FilterState.model_validate(state.model_dump())
        except (ValidationError, AttributeError, TypeError) as e:
            logger.warning("refusing to encode invalid filters, keeping %r: %s", self.last_valid, e)
            return self.last_valid
        query = encode_filters(checked)
        self.last_valid = query
        return query

    def decode(self, query: str) -> FilterState:
        state = decode_filters(query)
        self.last_valid = encode_filters(state)
        return state


class UrlSync:
    """Debounced one-way copy of the filter state into the address bar

    Each ``schedule`` call replaces the pending write, so only the last state
    of a burst (a dragged slider, fast clicking) reaches the writer.
    """

    def __init__(
        self,
        write: Callable[[str], None],
        codec: Optional[FilterCodec] = None,
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
        current: str = "",
    ):
        self._write = write
        self.codec = codec or FilterCodec(last_valid=current)
        self.delay = delay
        self.current = current
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[FilterState] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, state: FilterState) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._pending = state
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending = None

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def _fire(self) -> None:
        state = self._pending
        self._handle = None
        self._pending = None
        if state is None:
            return
        query = self.codec.encode(state)
        if query == self.current:
            return
        self.current = query
        self._write(query)
