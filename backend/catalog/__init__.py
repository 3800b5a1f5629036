from .models import (
    FilterState, PriceRange, WeightRange, Gemstone, FacetOption, PageResult,
    SimilarityCriteria, RankedCandidate, RelatedQuery,
)
from .errors import CatalogError, StoreError, FetchError, AggregationError, RecommendationError, FilterValueError
from .filters import (
    toggle_categorical_value, set_range, set_flag, set_search, set_sort, reset,
    without_dimension, apply_filters, active_filter_count, has_active_filters, QUICK_FILTERS,
)
from .codec import FilterCodec, UrlSync, encode_filters, decode_filters
from .store import CatalogStore, DataFrameCatalogStore
from .facets import FacetAggregator
from .pagination import PagedFetchController, FetchState
from .recommender import SimilarityRecommender, RecommendationTier, PriceBand, DEFAULT_TIERS

__all__ = [
    'FilterState','PriceRange','WeightRange','Gemstone','FacetOption','PageResult',
    'SimilarityCriteria','RankedCandidate','RelatedQuery',
    'CatalogError','StoreError','FetchError','AggregationError','RecommendationError','FilterValueError',
    'toggle_categorical_value','set_range','set_flag','set_search','set_sort','reset',
    'without_dimension','apply_filters','active_filter_count','has_active_filters','QUICK_FILTERS',
    'FilterCodec','UrlSync','encode_filters','decode_filters',
    'CatalogStore','DataFrameCatalogStore','FacetAggregator','PagedFetchController','FetchState',
    'SimilarityRecommender','RecommendationTier','PriceBand','DEFAULT_TIERS',
]
