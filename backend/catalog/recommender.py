"""Related gemstones for the detail page

Candidates are collected through an ordered list of tiers, each one looser
than the previous, and collection stops as soon as enough items are in hand.
Within a tier candidates are ranked by a small weighted score:

    same type   +3
    same color  +2
    price       +1 when the candidate's distance to the reference price ranks
                in the closer half of its tier

Ranking is rank-based on price so cheap and expensive stones are treated alike.
Ties keep discovery order (store order), which makes repeated calls with the
same inputs return the same list.
"""

from __future__ import annotations
import logging
import math
from typing import List, Optional, Sequence, Set, Tuple, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from .errors import RecommendationError, StoreError
from .models import Gemstone, RankedCandidate, RelatedQuery, SimilarityCriteria
from .store import CatalogStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 8
SAME_TYPE_WEIGHT = 3
SAME_COLOR_WEIGHT = 2
CLOSER_PRICE_WEIGHT = 1


class PriceBand(BaseModel):
    """Percentage band around the reference price: floor(p*low) .. ceil(p*high)"""
    model_config = ConfigDict(frozen=True)

    low: float = Field(default=0.5, ge=0)
    high: float = Field(default=1.5, ge=0)

    def bounds(self, price: int) -> Tuple[int, int]:
        return math.floor(price * self.low), math.ceil(price * self.high)


class RecommendationTier(BaseModel):
    # One acquisition step; the flags say which reference attributes must match
    model_config = ConfigDict(frozen=True)

    name: str
    same_type: bool = False
    same_color: bool = False
    within_price_band: bool = False

    def to_query(self, criteria: SimilarityCriteria, band: PriceBand) -> RelatedQuery:
        price_min: Optional[int] = None
        price_max: Optional[int] = None
        if self.within_price_band:
            price_min, price_max = band.bounds(criteria.price_amount)
        return RelatedQuery(
            type=criteria.type if self.same_type else None,
            color=criteria.color if self.same_color else None,
            price_min=price_min,
            price_max=price_max,
            exclude_id=criteria.reference_item_id,
            in_stock_only=True,
        )


DEFAULT_TIERS: Tuple[RecommendationTier, ...] = (
    RecommendationTier(name="same_type_and_price", same_type=True, within_price_band=True),
    RecommendationTier(name="same_color_and_price", same_color=True, within_price_band=True),
    RecommendationTier(name="same_type", same_type=True),
)


def rank_candidates(criteria: SimilarityCriteria, batch: Sequence[Gemstone], tier: str) -> List[RankedCandidate]:
    if not batch:
        return []
    distances = pd.Series([abs(item.price_amount - criteria.price_amount) for item in batch])
    ranks = distances.rank(method="min")
    closer = ranks <= len(batch) / 2
    ranked = []
    for i, item in enumerate(batch):
        score = 0
        if item.type == criteria.type:
            score += SAME_TYPE_WEIGHT
        if item.color == criteria.color:
            score += SAME_COLOR_WEIGHT
        if closer.iloc[i]:
            score += CLOSER_PRICE_WEIGHT
        ranked.append(RankedCandidate(item=item, score=score, tier=tier))
    # sorted() is stable, so equal scores stay in discovery order
    return sorted(ranked, key=lambda c: -c.score)


class SimilarityRecommender:
    def __init__(
        self,
        store: CatalogStore,
        tiers: Sequence[RecommendationTier] = DEFAULT_TIERS,
        band: Optional[PriceBand] = None,
    ):
        self.store = store
        self.tiers = tuple(tiers)
        self.band = band or PriceBand()

    async def recommend(
        self,
        reference: Union[Gemstone, SimilarityCriteria],
        limit: int = DEFAULT_LIMIT,
    ) -> List[RankedCandidate]:
        """Up to ``limit`` in-stock items related to ``reference``

        An empty list means nothing related exists. A store failure in any
        tier raises RecommendationError instead of returning a partial list.
        """
        if limit < 1:
            return []
        criteria = reference if isinstance(reference, SimilarityCriteria) else SimilarityCriteria.from_item(reference)
        seen: Set[str] = {criteria.reference_item_id}
        accumulated: List[RankedCandidate] = []
        for tier in self.tiers:
            if len(accumulated) >= limit:
                break
            query = tier.to_query(criteria, self.band)
            try:
                # Ask for enough rows to survive de-duplication against what we hold
                batch = await self.store.find_related(query, limit + len(seen))
            except StoreError as e:
                logger.error("related lookup for %s failed in tier %s: %s", criteria.reference_item_id, tier.name, e)
                raise RecommendationError(tier.name, str(e)) from e
            fresh: List[Gemstone] = []
            for item in batch:
                if item.id in seen or not item.in_stock:
                    continue
                seen.add(item.id)
                fresh.append(item)
            ranked = rank_candidates(criteria, fresh, tier.name)
            accumulated.extend(ranked[: limit - len(accumulated)])
            logger.debug("tier %s returned %d new candidates for %s", tier.name, len(fresh), criteria.reference_item_id)
        return accumulated
