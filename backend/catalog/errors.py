"""Error types raised by the catalog core

Every error here is recoverable by calling the same operation again
"""


class CatalogError(Exception):
    """Base class for catalog failures"""


class StoreError(CatalogError):
    """The catalog store could not answer a query"""


class FetchError(CatalogError):
    """A page fetch failed; accumulated results were left untouched"""

    def __init__(self, page: int, message: str):
        super().__init__(message)
        self.page = page


class AggregationError(CatalogError):
    """Facet counts could not be computed for a dimension"""

    def __init__(self, dimension: str, message: str):
        super().__init__(message)
        self.dimension = dimension


class RecommendationError(CatalogError):
    """A recommendation tier lookup failed, so no list is returned"""

    def __init__(self, tier: str, message: str):
        super().__init__(message)
        self.tier = tier


class FilterValueError(ValueError):
    """A filter mutation was called with an unknown dimension or bad bounds"""
