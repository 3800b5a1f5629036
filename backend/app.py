# FastAPI backend for the gemstone storefront catalog
# Serves filtered catalog pages, facet counts and related gemstones to the UI
# Run with: uvicorn app:app --reload (from backend/)
import os
import logging
from typing import Optional, List, Dict, Any
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from catalog.models import CatalogResponse, FacetsResponse, Gemstone, PaginationMeta, RelatedResponse
from catalog.codec import FilterCodec, encode_filters
from catalog.errors import RecommendationError, StoreError
from catalog.facets import CLARITY_ORDER, FacetAggregator
from catalog.filters import DIMENSION_COLUMNS, QUICK_FILTERS
from catalog.recommender import SimilarityRecommender
from catalog.store import CatalogStore, DataFrameCatalogStore

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("storefront")

# app

APP_VERSION = "2.0.0"
app = FastAPI(title="Gemstone Catalog API", version=APP_VERSION)

# CORS setup for local development with the Next.js storefront
allowed_origins = os.environ.get("ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins + ["http://localhost:8000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global state for the catalog
CATALOG_PATH = os.environ.get("CATALOG_PATH", "data/catalog.csv")
PAGE_SIZE = int(os.environ.get("PAGE_SIZE", "24"))
MAX_PAGE_SIZE = int(os.environ.get("MAX_PAGE_SIZE", "100"))
RELATED_LIMIT = int(os.environ.get("RELATED_LIMIT", "8"))
STORE: CatalogStore | None = None


def _get_store() -> CatalogStore:
    if STORE is None:
        raise HTTPException(status_code=500, detail="Catalog not ready")
    return STORE


@app.on_event("startup")
def startup():
    # Load the gemstone catalog when the server starts
    global STORE
    try:
        STORE = DataFrameCatalogStore.from_csv(CATALOG_PATH)
    except (OSError, StoreError) as e:
        raise RuntimeError(f"Failed to load catalog: {e}") from e


@app.get("/health")
def health():
    size = len(STORE.df) if isinstance(STORE, DataFrameCatalogStore) else 0
    return {"status": "ok", "catalog_size": size, "version": APP_VERSION}


@app.get("/version")
def version():
    return {"version": APP_VERSION}


@app.get("/catalog", response_model=CatalogResponse)
async def catalog(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(PAGE_SIZE, alias="pageSize", ge=1),
):
    # Filters come straight from the address bar; anything malformed is dropped
    store = _get_store()
    filters = FilterCodec().decode(request.url.query)
    page_size = min(page_size, MAX_PAGE_SIZE)
    try:
        result = await store.fetch_page(filters, page, page_size)
    except StoreError as e:
        logger.error("catalog page %d failed: %s", page, e)
        raise HTTPException(status_code=503, detail="Catalog temporarily unavailable")
    total_pages = -(-result.total_count // page_size)
    pagination = PaginationMeta(
        page=page,
        page_size=page_size,
        total_items=result.total_count,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    )
    return CatalogResponse(
        items=result.items,
        pagination=pagination,
        used_fuzzy=result.used_fuzzy,
        query=encode_filters(filters),
    )


@app.get("/catalog/facets", response_model=FacetsResponse)
async def catalog_facets(request: Request):
    # Counts degrade to unknown (null) per dimension, never to an error page
    filters = FilterCodec().decode(request.url.query)
    aggregator = FacetAggregator(_get_store())
    facets = await aggregator.compute_all(filters)
    bounds = await aggregator.range_bounds(filters)
    price = bounds.get("price")
    return FacetsResponse(
        facets=facets,
        price_bounds={k: int(v) for k, v in price.items()} if price else None,
        weight_bounds=bounds.get("weight"),
        query=encode_filters(filters),
    )


@app.get("/search/suggestions")
async def search_suggestions(q: str = Query("", max_length=100), limit: int = Query(5, ge=1, le=20)):
    # "Did you mean" terms for the search box
    store = _get_store()
    try:
        suggestions = await store.suggest(q, limit=limit)
    except StoreError as e:
        logger.warning("suggestions for %r unavailable: %s", q, e)
        suggestions = []
    return {"query": q, "suggestions": suggestions}


@app.get("/gemstones/{gid}", response_model=Gemstone)
async def get_gemstone(gid: str):
    store = _get_store()
    try:
        item = await store.get(gid)
    except StoreError as e:
        logger.error("lookup of %s failed: %s", gid, e)
        raise HTTPException(status_code=503, detail="Catalog temporarily unavailable")
    if item is None:
        raise HTTPException(status_code=404, detail="Not found")
    return item


@app.get("/related/{gid}", response_model=RelatedResponse)
async def related(gid: str, limit: int = Query(RELATED_LIMIT, ge=1, le=24)):
    store = _get_store()
    reference = await get_gemstone(gid)
    recommender = SimilarityRecommender(store)
    try:
        ranked = await recommender.recommend(reference, limit=limit)
    except RecommendationError as e:
        # Shown like an empty shelf, but kept distinct for diagnostics
        logger.warning("related gemstones for %s unavailable (tier %s): %s", gid, e.tier, e)
        return RelatedResponse(status="unavailable", products=[])
    if not ranked:
        return RelatedResponse(status="empty", products=[])
    tiers: List[str] = []
    for c in ranked:
        if c.tier not in tiers:
            tiers.append(c.tier)
    return RelatedResponse(status="ok", products=[c.item for c in ranked], tiers=tiers)


@app.get("/meta")
def meta():
    store = _get_store()
    if not isinstance(store, DataFrameCatalogStore):
        raise HTTPException(status_code=501, detail="Metadata needs an in-memory catalog")
    df = store.df
    values: Dict[str, Any] = {}
    for dim, col in DIMENSION_COLUMNS.items():
        found = [v for v in df[col].dropna().unique().tolist() if v]
        if dim == "clarities":
            order = {g: i for i, g in enumerate(CLARITY_ORDER)}
            values[dim] = sorted(found, key=lambda g: (order.get(g, len(order)), g))
        else:
            values[dim] = sorted(found)
    price_min = int(df["price_amount"].min()) if not df.empty else 0
    price_max = int(df["price_amount"].max()) if not df.empty else 0
    weight_min = float(df["weight_carats"].min()) if not df.empty else 0.0
    weight_max = float(df["weight_carats"].max()) if not df.empty else 0.0
    return {
        **values,
        "price_min": price_min,
        "price_max": price_max,
        "weight_min": weight_min,
        "weight_max": weight_max,
    }


@app.get("/quick-filters")
def quick_filters():
    out: List[Dict[str, Optional[str]]] = []
    for qid, preset in QUICK_FILTERS.items():
        out.append({
            "id": qid,
            "label": preset["label"],
            "description": preset["description"],
            "query": encode_filters(preset["filters"]),
        })
    return {"quick_filters": out}


if __name__ == "__main__":
    # Local development: python app.py (or uvicorn app:app --reload)
    import uvicorn

    uvicorn.run(app, host=os.environ.get("HOST", "127.0.0.1"), port=int(os.environ.get("PORT", "8000")))
