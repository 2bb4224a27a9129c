"""Similar-product recommendation pipeline.

Orchestrates one request: make sure the viewed product has a class, weight
classes by the user's recent views, draw content-based picks from the class
pools, find users with overlapping histories through the fingerprint index,
draw collaborative picks from their views, and mix both into one shuffled
list.

Store and classifier calls on this path are awaited and their failures end
the request. Maintenance work (recording the view, refreshing a stale class)
runs as detached tasks whose failures are only logged.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Coroutine, List, Optional, Set

import numpy as np

from simrec.api.exceptions import ClassificationError, InvalidRequestError, SimRecException
from simrec.api.metrics import metrics_service
from simrec.recommender.classifier import Classifier, fetch_image_bytes
from simrec.recommender.collab import CollabSampler
from simrec.recommender.config import RecommenderConfig
from simrec.recommender.minhash import MinHashSketcher
from simrec.recommender.mixer import mix_recommendations
from simrec.recommender.neighbors import NeighborFinder
from simrec.recommender.records import HistoryRow, Product, RecommendationResult
from simrec.recommender.sampling import RandomSource, sample_content
from simrec.recommender.store import SQLStore
from simrec.recommender.weighting import calc_class_weights

# Configure module logger
logger = logging.getLogger(__name__)

HISTORY_TASK = "record-history"
RECLASSIFY_TASK = "reclassify"


class SystemClock:
    """Wall clock in milliseconds since the epoch."""

    def now(self) -> int:
        return int(time.time() * 1000)


def validate_product(product: Product) -> None:
    """Reject a viewed product with missing fields.

    Raises:
        InvalidRequestError: If the id or picture is empty or a field is not
            a string.
    """
    for field_name in Product._fields:
        if not isinstance(getattr(product, field_name), str):
            raise InvalidRequestError(f"'{field_name}' must be a string")
    if not product.product_id.strip():
        raise InvalidRequestError("'id' must not be empty")
    if not product.picture.strip():
        raise InvalidRequestError("'pic' must not be empty")


class SimilarProductRecommender:
    """Computes similar-product recommendations for a product-detail view.

    Args:
        store: Store holding products, history and fingerprints.
        classifier: Picture classifier used for unseen or stale products.
        config: Tunables (default: ``RecommenderConfig()``).
        clock: Object with ``now() -> int`` milliseconds.
        image_fetcher: ``(url, timeout) -> bytes`` used to download pictures.
        rng_factory: Builds a fresh random source for each request.
    """

    def __init__(
        self,
        store: SQLStore,
        classifier: Classifier,
        config: Optional[RecommenderConfig] = None,
        clock: Optional[Any] = None,
        image_fetcher: Callable[[str, float], bytes] = fetch_image_bytes,
        rng_factory: Callable[[], RandomSource] = np.random.default_rng,
    ):
        self.store = store
        self.classifier = classifier
        self.config = config or RecommenderConfig()
        self.clock = clock or SystemClock()
        self.image_fetcher = image_fetcher
        self.rng_factory = rng_factory

        self.sketcher = MinHashSketcher(self.config.sketch_capacity, self.config.salt_bytes)
        self.neighbor_finder = NeighborFinder(store, self.config)
        self.collab_sampler = CollabSampler(store, self.config)

        self._background: Set[asyncio.Task] = set()

    # ----- background work -----

    def spawn_background(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Run ``coro`` detached from the current request.

        Failures are logged and counted; they never reach the caller.
        """
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        logger.error(
            "Background task failed",
            extra={"task": task.get_name(), "error": str(error), "error_type": type(error).__name__},
            exc_info=error,
        )
        metrics_service.record_background_failure(task.get_name())

    async def drain_background(self) -> None:
        """Wait until every detached task has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ----- classification -----

    async def classify_product(self, product: Product) -> str:
        """Download, classify and store the class of ``product``."""
        image = await asyncio.to_thread(
            self.image_fetcher, product.picture, self.config.image_fetch_timeout_s
        )
        classification = await self.classifier.classify(image)
        await self.store.upsert_class(
            product.product_id,
            classification,
            self.clock.now(),
            name=product.name,
            picture=product.picture,
        )
        return classification

    async def resolve_classification(self, product: Product) -> str:
        """Class of ``product``, classifying it first if it was never seen.

        A stored class older than ``reclassify_after_ms`` is returned as is
        while a refresh runs in the background.

        Raises:
            StoreError: If the stored class cannot be read or written.
            ClassificationError: If a first-time classification fails.
        """
        record = await self.store.query_class(product.product_id)

        if record is None:
            logger.info("Classifying unseen product", extra={"product_id": product.product_id})
            try:
                return await self.classify_product(product)
            except SimRecException:
                raise
            except Exception as e:
                raise ClassificationError(product.product_id, e) from e

        if self.clock.now() - record.last_updated >= self.config.reclassify_after_ms:
            logger.info("Refreshing stale classification", extra={"product_id": product.product_id})
            self.spawn_background(self.classify_product(product), RECLASSIFY_TASK)

        return record.classification

    # ----- recommendation -----

    async def _content_picks(
        self,
        product_id: str,
        current_class: str,
        history: List[HistoryRow],
        rng: RandomSource,
    ) -> List[Product]:
        class_weights = calc_class_weights(
            current_class,
            [row.classification for row in history],
            self.config.history_decay,
        )
        labels = list(class_weights)
        pools = await asyncio.gather(
            *(self.store.query_by_class(label, exclude_product_id=product_id) for label in labels)
        )
        return sample_content(
            class_weights,
            dict(zip(labels, pools)),
            self.config.content_quota,
            rng,
            self.config.max_draw_retries,
        )

    async def _collab_picks(
        self,
        product_id: str,
        user_key: str,
        history: List[HistoryRow],
        content: List[Product],
        rng: RandomSource,
    ) -> List[Product]:
        viewed = {row.product_id for row in history} | {product_id}
        signature = self.sketcher.sketch(viewed)
        neighbors = await self.neighbor_finder.find_neighbors(user_key, signature)

        target = max(0, self.config.collab_quota - len(content))
        exclude = viewed | {product.product_id for product in content}
        return await self.collab_sampler.sample(neighbors, exclude, target, self.clock.now(), rng)

    async def recommend(
        self,
        product_id: str,
        user_key: Optional[str],
        current_class: str,
        rng: Optional[RandomSource] = None,
    ) -> RecommendationResult:
        """Recommend products similar to ``product_id``.

        Args:
            product_id: Product being viewed.
            user_key: Key of the requesting user, if known.
            current_class: Class of the viewed product.
            rng: Random source for this request (default: a fresh
                ``numpy.random.Generator``).

        Returns:
            Result holding at most ``num_recommendations`` distinct products
            in random order.

        Raises:
            StoreError: If any store query on the way fails.
        """
        start_time = time.time()
        rng = rng if rng is not None else self.rng_factory()

        history: List[HistoryRow] = []
        if user_key:
            history = await self.store.query_history(user_key, product_id, self.config.history_limit)

        content = await self._content_picks(product_id, current_class, history, rng)

        collab: List[Product] = []
        if user_key:
            collab = await self._collab_picks(product_id, user_key, history, content, rng)

        recommendations = mix_recommendations(content, collab, self.config.num_recommendations, rng)

        logger.info(
            "Recommendations generated",
            extra={
                "product_id": product_id,
                "classification": current_class,
                "history_length": len(history),
                "content_items": len(content),
                "collab_items": len(collab),
                "num_recommendations": len(recommendations),
                "total_time_ms": round((time.time() - start_time) * 1000, 2),
            },
        )

        return RecommendationResult(
            classification=current_class,
            recommendations=recommendations,
            content_count=len(content),
            collab_count=len(collab),
        )

    async def handle_request(
        self,
        product: Product,
        user_key: Optional[str] = None,
        rng: Optional[RandomSource] = None,
    ) -> RecommendationResult:
        """Serve a product-detail view end to end.

        Validates the product, mints a user key when none is given, records
        the view in the background, resolves the product's class and
        recommends.

        Raises:
            InvalidRequestError: Before any side effect, if ``product`` is
                malformed.
            StoreError: If a store call on the request path fails.
            ClassificationError: If the product must be classified and
                classification fails.
        """
        validate_product(product)

        new_user_key = None
        if not user_key:
            user_key = str(uuid.uuid4())
            new_user_key = user_key
            logger.info("Issuing new user key")

        self.spawn_background(
            self.store.upsert_history(user_key, product.product_id, self.clock.now()),
            HISTORY_TASK,
        )

        classification = await self.resolve_classification(product)
        result = await self.recommend(product.product_id, user_key, classification, rng)
        result.new_user_key = new_user_key
        return result

    async def purge_expired_history(self) -> int:
        """Delete views older than the retention window.

        Returns:
            Number of deleted history rows.
        """
        cutoff = self.clock.now() - self.config.history_max_age_ms
        deleted = await self.store.delete_expired_history(cutoff)
        logger.info("Purged expired history", extra={"deleted": deleted, "cutoff": cutoff})
        return deleted
