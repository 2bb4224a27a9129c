"""Record types shared by the store, the samplers and the API."""

from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional


class Product(NamedTuple):
    """Display attributes of a recommendable product."""

    product_id: str
    name: str
    picture: str


class ViewEvent(NamedTuple):
    user_key: str
    product_id: str
    timestamp: int


class ProductClassRecord(NamedTuple):
    product_id: str
    classification: str
    last_updated: int


class HistoryRow(NamedTuple):
    """A view event joined with the viewed product's record."""

    product_id: str
    last_visited: int
    name: str
    picture: str
    classification: str
    last_updated: int


@dataclass
class RecommendationResult:
    """Outcome of one recommendation request.

    Attributes:
        classification: Class of the viewed product.
        recommendations: Final, shuffled list of products.
        new_user_key: Freshly minted user key, if the caller sent none.
        content_count: Items contributed by content-based sampling.
        collab_count: Items contributed by collaborative sampling.
    """

    classification: str
    recommendations: List[Product] = field(default_factory=list)
    new_user_key: Optional[str] = None
    content_count: int = 0
    collab_count: int = 0
