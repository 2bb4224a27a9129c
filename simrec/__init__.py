"""SimRec: similar-product recommendations for product-detail pages.

This package provides a backend service that mixes content-based filtering
over a product's taxonomy class with collaborative filtering over other
users' browsing histories.

Modules:
    api: FastAPI application and REST API endpoints
    recommender: sampling, sketching and neighbour search logic
"""

__version__ = "0.1.0"
