from __future__ import annotations
import re
from typing import List, Optional, Dict, Any, FrozenSet, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# These are the data structures shared by the store, the codec and the API
CATEGORICAL_DIMENSIONS = ("types", "colors", "cuts", "clarities", "origins")
RANGE_DIMENSIONS = ("price", "weight")
FLAG_NAMES = ("in_stock_only", "has_images", "has_certification", "has_ai_analysis")

SortField = Literal["created_at", "price_amount", "weight_carats", "type"]
SortDirection = Literal["asc", "desc"]
DEFAULT_SORT_FIELD = "created_at"
DEFAULT_SORT_DIRECTION = "desc"
DEFAULT_CURRENCY = "USD"
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class Gemstone(BaseModel):
    # One catalog item as the storefront sees it
    id: str
    type: str
    color: str
    cut: str = ""
    clarity: str = ""
    origin: Optional[str] = None
    price_amount: int  # minor units (cents)
    price_currency: str = DEFAULT_CURRENCY
    weight_carats: float = 0.0
    in_stock: bool = True
    has_images: bool = False
    has_certification: bool = False
    has_ai_analysis: bool = False
    serial_number: str = ""
    internal_code: str = ""
    created_at: str = ""


class PriceRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int = Field(ge=0)
    max: int = Field(ge=0)
    currency: str = DEFAULT_CURRENCY

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, v: Any) -> Any:
        # ISO 4217 alpha code, stored upper-case
        if isinstance(v, str):
            v = v.strip().upper()
            if not CURRENCY_RE.match(v):
                raise ValueError(f"currency must be a three-letter code, got {v!r}")
        return v

    @model_validator(mode="after")
    def _check_order(self) -> "PriceRange":
        if self.min > self.max:
            raise ValueError(f"price min {self.min} exceeds max {self.max}")
        return self


class WeightRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float = Field(ge=0, allow_inf_nan=False)
    max: float = Field(ge=0, allow_inf_nan=False)

    @model_validator(mode="after")
    def _check_order(self) -> "WeightRange":
        if self.min > self.max:
            raise ValueError(f"weight min {self.min} exceeds max {self.max}")
        return self


class FilterState(BaseModel):
    """Everything the shopper is currently asking for.

    Instances are immutable; use the helpers in ``catalog.filters`` to derive a
    new state. Categorical selections are frozensets so two states built in a
    different order still compare equal.
    """
    model_config = ConfigDict(frozen=True)

    search: Optional[str] = None
    types: FrozenSet[str] = frozenset()
    colors: FrozenSet[str] = frozenset()
    cuts: FrozenSet[str] = frozenset()
    clarities: FrozenSet[str] = frozenset()
    origins: FrozenSet[str] = frozenset()
    price_range: Optional[PriceRange] = None
    weight_range: Optional[WeightRange] = None
    in_stock_only: bool = False
    has_images: bool = False
    has_certification: bool = False
    has_ai_analysis: bool = False
    sort_by: SortField = DEFAULT_SORT_FIELD
    sort_direction: SortDirection = DEFAULT_SORT_DIRECTION

    @field_validator("search")
    @classmethod
    def _clean_search(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator(*CATEGORICAL_DIMENSIONS, mode="before")
    @classmethod
    def _clean_values(cls, v: Any) -> FrozenSet[str]:
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = [v]
        out = set()
        for item in v:
            if not isinstance(item, str):
                raise ValueError(f"filter values must be strings, got {item!r}")
            item = item.strip()
            if not item:
                continue
            # the comma is the list delimiter in the query string
            if "," in item:
                raise ValueError(f"filter value {item!r} contains a comma")
            out.add(item)
        return frozenset(out)


class FacetOption(BaseModel):
    value: str
    label: str
    count: int = Field(ge=0)
    selected: bool = False
    disabled: bool = False
    group: Optional[str] = None  # diamond / fancy / colored for colors


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class StorePage(BaseModel):
    # Raw answer of the catalog store for one page
    items: List[Gemstone]
    total_count: int
    used_fuzzy: bool = False


class PageResult(BaseModel):
    # Accumulated view exposed by the paged fetch controller
    items: List[Gemstone] = Field(default_factory=list)
    page: int = 0
    page_size: int
    total_count: int = 0
    used_fuzzy: bool = False
    has_next_page: bool = True


class RelatedQuery(BaseModel):
    # Plain predicate the store understands for recommendation tiers
    model_config = ConfigDict(frozen=True)

    type: Optional[str] = None
    color: Optional[str] = None
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    exclude_id: Optional[str] = None
    in_stock_only: bool = True


class SimilarityCriteria(BaseModel):
    reference_item_id: str
    type: str
    color: str
    price_amount: int
    price_currency: str = DEFAULT_CURRENCY

    @classmethod
    def from_item(cls, item: Gemstone) -> "SimilarityCriteria":
        return cls(
            reference_item_id=item.id,
            type=item.type,
            color=item.color,
            price_amount=item.price_amount,
            price_currency=item.price_currency,
        )


class RankedCandidate(BaseModel):
    item: Gemstone
    score: int
    tier: str


class CatalogResponse(BaseModel):
    # What the catalog grid receives
    items: List[Gemstone]
    pagination: PaginationMeta
    used_fuzzy: bool = False  # no exact match, results come from typo tolerant search
    query: str


class FacetsResponse(BaseModel):
    # None means the counts for that dimension are unknown right now
    facets: Dict[str, Optional[List[FacetOption]]]
    price_bounds: Optional[Dict[str, int]] = None
    weight_bounds: Optional[Dict[str, float]] = None
    query: str


class RelatedResponse(BaseModel):
    status: Literal["ok", "empty", "unavailable"]
    products: List[Gemstone]
    tiers: List[str] = Field(default_factory=list)
