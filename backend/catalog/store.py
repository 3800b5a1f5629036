from __future__ import annotations
import csv
import re
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from rapidfuzz import fuzz, process, utils

from .errors import StoreError
from .filters import DIMENSION_COLUMNS, SEARCH_COLUMNS, apply_filters, without_dimension
from .models import FilterState, Gemstone, RelatedQuery, StorePage

logger = logging.getLogger(__name__)

STRING_COLUMNS = ["type", "color", "cut", "clarity", "origin", "price_currency",
                  "serial_number", "internal_code", "created_at"]
BOOL_COLUMNS = ["in_stock", "has_images", "has_certification", "has_ai_analysis"]
_TRUTHY = {"true", "1", "yes", "y", "t"}

# Typo tolerance for search, on rapidfuzz's 0-100 scale
FUZZY_THRESHOLD = 75
SUGGESTION_CUTOFF = 60
SUGGESTION_COLUMNS = ["type", "color", "cut", "origin"]
_WORD_SPLIT = re.compile(r"[\s\-_/]+")


class CatalogStore(ABC):
    """Read-only catalog the browsing core queries

    Implementations may sit on a database or a remote API; every method is a
    coroutine and raises StoreError when the backend cannot answer.
    """

    @abstractmethod
    async def fetch_page(self, filters: FilterState, page: int, page_size: int) -> StorePage:
        """Return one page (1-based) of items matching ``filters`` plus the total count"""

    @abstractmethod
    async def count_values(self, dimension: str, filters: FilterState) -> Dict[str, int]:
        """Count matching items per distinct value of a categorical dimension"""

    @abstractmethod
    async def value_bounds(self, column: str, filters: FilterState) -> Optional[Tuple[float, float]]:
        """Min and max of a numeric column over matching items, None when nothing matches"""

    @abstractmethod
    async def find_related(self, query: RelatedQuery, limit: int) -> List[Gemstone]:
        """Items matching a simple equality/range predicate, in the store's native order"""

    @abstractmethod
    async def get(self, item_id: str) -> Optional[Gemstone]:
        pass

    @abstractmethod
    async def suggest(self, text: str, limit: int = 5) -> List[str]:
        """Catalog terms close to ``text``, best first ("did you mean")"""


def _to_bool(series: pd.Series) -> pd.Series:
    if series.dtype == bool:
        return series
    return series.astype(str).str.strip().str.lower().isin(_TRUTHY)


def normalize_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Coerce a raw catalog frame into the column types the store relies on"""
    missing = [c for c in ("id", "type", "color", "price_amount") if c not in df.columns]
    if missing:
        raise StoreError(f"catalog is missing required columns: {', '.join(missing)}")
    out = df.copy()
    out["id"] = out["id"].astype(str)
    for col in STRING_COLUMNS:
        if col not in out.columns:
            out[col] = ""
        out[col] = out[col].fillna("").astype(str).str.strip()
    out.loc[out["price_currency"] == "", "price_currency"] = "USD"
    # Coerce numeric types
    out["price_amount"] = pd.to_numeric(out["price_amount"], errors="coerce").fillna(0).round().astype("int64")
    if "weight_carats" not in out.columns:
        out["weight_carats"] = 0.0
    out["weight_carats"] = pd.to_numeric(out["weight_carats"], errors="coerce").fillna(0.0).astype(float)
    for col in BOOL_COLUMNS:
        if col not in out.columns:
            out[col] = col == "in_stock"
        out[col] = _to_bool(out[col])
    return out.reset_index(drop=True)


def _to_item(row: Dict[str, Any]) -> Gemstone:
    return Gemstone(
        id=str(row["id"]),
        type=row["type"],
        color=row["color"],
        cut=row["cut"],
        clarity=row["clarity"],
        origin=row["origin"] or None,
        price_amount=int(row["price_amount"]),
        price_currency=row["price_currency"],
        weight_carats=float(row["weight_carats"]),
        in_stock=bool(row["in_stock"]),
        has_images=bool(row["has_images"]),
        has_certification=bool(row["has_certification"]),
        has_ai_analysis=bool(row["has_ai_analysis"]),
        serial_number=row["serial_number"],
        internal_code=row["internal_code"],
        created_at=row["created_at"],
    )


def _fuzzy_score(query: str, value: str) -> float:
    # Best match against the whole value or any single word of it
    value = value.lower()
    parts = [value] + [w for w in _WORD_SPLIT.split(value) if w]
    return max(fuzz.ratio(query, p) for p in parts)


def fuzzy_search(df: pd.DataFrame, text: str, threshold: float = FUZZY_THRESHOLD) -> pd.DataFrame:
    """Rows where any search column is a close match for ``text``"""
    query = text.strip().lower()
    if df.empty or not query:
        return df.iloc[0:0]
    hit = pd.Series(False, index=df.index)
    for col in SEARCH_COLUMNS:
        if col in df.columns:
            scores = df[col].astype(str).map(lambda v: _fuzzy_score(query, v))
            hit |= (scores >= threshold).astype(bool)
    return df[hit]


def _read_catalog_csv(csv_path: str) -> pd.DataFrame:
    # Load the gemstone catalog, tolerating hand-edited exports
    skipped_rows = 0
    bad_lines: list[int] = []
    try:
        df = pd.read_csv(csv_path, dtype=str, keep_default_na=False, engine="c")
    except (pd.errors.ParserError, UnicodeDecodeError):
        # Fallback parser more forgiving with quotes and escape characters
        try:
            df = pd.read_csv(
                csv_path,
                dtype=str,
                keep_default_na=False,
                engine="python",
                quotechar='"',
                escapechar='\\',
            )
        except pd.errors.ParserError:
            # Last resort: skip malformed lines so the storefront can start
            df = pd.read_csv(csv_path, dtype=str, keep_default_na=False, engine="python", on_bad_lines="skip")
            with open(csv_path, newline="") as f:
                total = sum(1 for _ in f) - 1  # minus header
            skipped_rows = max(total - len(df), 0)

    # Report exact malformed line numbers (non fatal)
    with open(csv_path, newline="") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header:
            ncols = len(header)
            for lineno, row in enumerate(reader, start=2):
                if len(row) != ncols:
                    bad_lines.append(lineno)
    if skipped_rows or bad_lines:
        preview = ", ".join(map(str, bad_lines[:20]))
        more = f" (+{len(bad_lines) - 20} more)" if len(bad_lines) > 20 else ""
        logger.warning(
            "catalog %s: skipped %d malformed row(s); malformed line numbers: %s%s",
            csv_path, skipped_rows, preview or "none", more,
        )
    return df


class DataFrameCatalogStore(CatalogStore):
    """In-memory catalog store backed by a pandas DataFrame

    Row order is the native order; sorts are stable so pages never shuffle
    between requests.
    """

    def __init__(self, df: pd.DataFrame):
        self.df = normalize_frame(df)
        logger.info("catalog store ready with %d gemstones", len(self.df))

    @classmethod
    def from_csv(cls, csv_path: str) -> "DataFrameCatalogStore":
        if not os.path.isfile(csv_path):
            raise FileNotFoundError(csv_path)
        return cls(_read_catalog_csv(csv_path))

    def _sorted(self, df: pd.DataFrame, f: FilterState) -> pd.DataFrame:
        return df.sort_values(f.sort_by, ascending=f.sort_direction == "asc", kind="mergesort")

    async def fetch_page(self, filters: FilterState, page: int, page_size: int) -> StorePage:
        if page < 1 or page_size < 1:
            raise StoreError(f"invalid page request page={page} page_size={page_size}")
        used_fuzzy = False
        try:
            matched = apply_filters(self.df, filters)
            if matched.empty and filters.search:
                # No exact hit: retry the same filters with typo tolerant search
                loose = fuzzy_search(apply_filters(self.df, without_dimension(filters, "search")), filters.search)
                if not loose.empty:
                    logger.info("no exact match for %r, %d fuzzy match(es)", filters.search, len(loose))
                    matched, used_fuzzy = loose, True
            matched = self._sorted(matched, filters)
        except (KeyError, ValueError, TypeError) as e:
            logger.error("catalog query failed: %s", e)
            raise StoreError(f"catalog query failed: {e}") from e
        start = (page - 1) * page_size
        rows = matched.iloc[start:start + page_size].to_dict(orient="records")
        return StorePage(items=[_to_item(r) for r in rows], total_count=len(matched), used_fuzzy=used_fuzzy)

    async def count_values(self, dimension: str, filters: FilterState) -> Dict[str, int]:
        col = DIMENSION_COLUMNS.get(dimension)
        if col is None:
            raise StoreError(f"unknown facet dimension: {dimension}")
        try:
            matched = apply_filters(self.df, filters)
        except (KeyError, ValueError, TypeError) as e:
            raise StoreError(f"facet count query failed: {e}") from e
        values = matched[col]
        counts = values[values != ""].value_counts()
        return {str(k): int(v) for k, v in counts.items()}

    async def value_bounds(self, column: str, filters: FilterState) -> Optional[Tuple[float, float]]:
        if column not in ("price_amount", "weight_carats"):
            raise StoreError(f"no numeric bounds for column: {column}")
        try:
            matched = apply_filters(self.df, filters)
        except (KeyError, ValueError, TypeError) as e:
            raise StoreError(f"bounds query failed: {e}") from e
        if matched.empty:
            return None
        return matched[column].min().item(), matched[column].max().item()

    async def find_related(self, query: RelatedQuery, limit: int) -> List[Gemstone]:
        out = self.df
        if query.exclude_id is not None:
            out = out[out["id"] != query.exclude_id]
        if query.in_stock_only:
            out = out[out["in_stock"]]
        if query.type is not None:
            out = out[out["type"] == query.type]
        if query.color is not None:
            out = out[out["color"] == query.color]
        if query.price_min is not None:
            out = out[out["price_amount"] >= query.price_min]
        if query.price_max is not None:
            out = out[out["price_amount"] <= query.price_max]
        return [_to_item(r) for r in out.head(limit).to_dict(orient="records")]

    async def get(self, item_id: str) -> Optional[Gemstone]:
        row = self.df.loc[self.df["id"] == str(item_id)]
        if row.empty:
            return None
        return _to_item(row.iloc[0].to_dict())

    async def suggest(self, text: str, limit: int = 5) -> List[str]:
        if not (text or "").strip() or limit < 1:
            return []
        terms = sorted({v for col in SUGGESTION_COLUMNS for v in self.df[col].tolist() if v})
        found = process.extract(
            text,
            terms,
            scorer=fuzz.WRatio,
            processor=utils.default_process,
            limit=limit,
            score_cutoff=SUGGESTION_CUTOFF,
        )
        return [term for term, _score, _idx in found]
