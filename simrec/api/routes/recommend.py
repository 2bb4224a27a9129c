"""Recommendation endpoints for the SimRec API.

The product page posts the product it is showing; the response lists
similar products. Users are tracked with an anonymous cookie that is issued
on their first request.
"""

import logging
import time
from typing import List
from urllib.parse import unquote

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, Field, ValidationError

from simrec.api.exceptions import InvalidRequestError, SimRecException
from simrec.api.metrics import metrics_service
from simrec.recommender.pipeline import SimilarProductRecommender
from simrec.recommender.records import Product

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(
    prefix="/api",
    tags=["recommendations"],
)


class RecommendRequest(BaseModel):
    """Product currently shown on the page.

    Attributes:
        id: Product ID.
        name: Display name.
        pic: URL of the product picture.
    """

    id: str = Field(..., min_length=1, description="Product ID")
    name: str = Field(..., description="Product display name")
    pic: str = Field(..., min_length=1, description="Product picture URL")

    def to_product(self) -> Product:
        return Product(product_id=self.id, name=self.name, picture=self.pic)


class RecommendedProduct(BaseModel):
    product_id: str = Field(..., description="Product ID")
    name: str = Field(..., description="Product display name")
    picture: str = Field(..., description="Product picture URL")


class RecommendationResponse(BaseModel):
    """Response model for recommendation requests.

    Attributes:
        classification: Class assigned to the viewed product.
        recommendations: Similar products in display order.
    """

    classification: str = Field(..., description="Class of the viewed product")
    recommendations: List[RecommendedProduct] = Field(
        default_factory=list, description="Recommended products"
    )


def parse_request_body(raw: bytes) -> RecommendRequest:
    """Parse a possibly URI-encoded JSON request body.

    Raises:
        InvalidRequestError: If the body is not valid JSON or fields are
            missing or of the wrong type.
    """
    try:
        text = unquote(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise InvalidRequestError("body is not UTF-8") from e

    try:
        return RecommendRequest.model_validate_json(text)
    except ValidationError as e:
        raise InvalidRequestError(
            "expected a JSON object with string fields 'id', 'name' and 'pic'",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def get_recommender(request: Request) -> SimilarProductRecommender:
    recommender = getattr(request.app.state, "recommender", None)
    if recommender is None:
        raise SimRecException("Recommender service unavailable", status_code=503)
    return recommender


@router.post("/recommendations", response_model=RecommendationResponse)
async def get_recommendations(request: Request, response: Response) -> RecommendationResponse:
    """Get products similar to the one being viewed.

    The body is a JSON object ``{"id", "name", "pic"}``, optionally
    URI-encoded. When the request carries no user cookie a new key is issued
    through ``Set-Cookie``.

    Raises:
        InvalidRequestError: If the body is malformed (400).
        StoreError: If the store fails (500).
        ClassificationError: If an unseen product cannot be classified (502).

    Example:
        POST /api/recommendations
        {"id": "42", "name": "Teapot", "pic": "https://cdn.example/42.png"}
    """
    start_time = time.time()
    recommender = get_recommender(request)
    config = recommender.config

    payload = parse_request_body(await request.body())
    user_key = request.cookies.get(config.cookie_name)

    logger.info(
        "Generating recommendations",
        extra={"product_id": payload.id, "known_user": bool(user_key)},
    )

    result = await recommender.handle_request(payload.to_product(), user_key)

    if result.new_user_key:
        response.set_cookie(
            key=config.cookie_name,
            value=result.new_user_key,
            max_age=config.cookie_max_age_s,
            path="/",
            secure=config.cookie_secure,
        )

    metrics_service.record_recommendation(
        latency_ms=(time.time() - start_time) * 1000,
        content_items=result.content_count,
        collab_items=result.collab_count,
    )

    return RecommendationResponse(
        classification=result.classification,
        recommendations=[
            RecommendedProduct(product_id=p.product_id, name=p.name, picture=p.picture)
            for p in result.recommendations
        ],
    )
