"""Product picture classification.

Pictures are decoded with Pillow into a channel-planar float vector (all red
values, then green, then blue, each scaled to [0, 1]) and scored by a
scikit-learn classifier persisted with joblib. Scores are turned into
probabilities with a softmax and the most likely label becomes the product's
class.
"""

import asyncio
import io
import logging
import threading
import urllib.request
from typing import Any, Dict, List, Optional, Protocol, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError
from scipy.special import softmax

from simrec.api.exceptions import ModelLoadError, ModelNotFoundError
from simrec.recommender.utils import check_model_exists, load_model_artifacts

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SIZE = 224
DEFAULT_TOP_N = 5


class Classifier(Protocol):
    async def classify(self, image_bytes: bytes) -> str: ...


def fetch_image_bytes(url: str, timeout: float = 10.0) -> bytes:
    """Download a product picture.

    Raises:
        OSError: If the picture cannot be fetched.
    """
    with urllib.request.urlopen(url, timeout=timeout) as resp:
        if resp.status >= 400:
            raise OSError(f"Fetching {url} returned HTTP {resp.status}")
        return resp.read()


def decode_image(raw: bytes, size: int = DEFAULT_IMAGE_SIZE) -> np.ndarray:
    """Decode image bytes into a flat channel-planar float32 vector.

    The alpha channel, if any, is dropped and the picture is resized to
    ``size x size``.

    Args:
        raw: Encoded image bytes (PNG, JPEG, ...).
        size: Output side length in pixels.

    Returns:
        Array of shape ``(3 * size * size,)`` with values in [0, 1].

    Raises:
        ValueError: If the bytes are not a decodable image.
    """
    if not raw:
        raise ValueError("Empty image bytes")
    try:
        img = Image.open(io.BytesIO(raw))
        img = img.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Image cannot be decoded: {e}") from e

    if img.size != (size, size):
        img = img.resize((size, size))

    pixels = np.asarray(img, dtype=np.float32) / 255.0
    return pixels.transpose(2, 0, 1).reshape(-1)


def top_classes(scores: np.ndarray, labels: List[str], n: int = DEFAULT_TOP_N) -> List[Tuple[str, float]]:
    """Top ``n`` labels by softmax probability, most likely first."""
    probabilities = softmax(np.asarray(scores, dtype=np.float64))
    order = np.argsort(-probabilities, kind="stable")[:n]
    return [(labels[int(idx)], float(probabilities[idx])) for idx in order]


class ModelClassifier:
    """Classifier backed by joblib artifacts in ``model_dir``.

    Artifacts are loaded on first use so the service can start before a
    model has been trained. ``image_size`` applies only when the metadata
    does not record one.
    """

    def __init__(
        self,
        model_dir: str,
        top_n: int = DEFAULT_TOP_N,
        image_size: int = DEFAULT_IMAGE_SIZE,
    ):
        self.model_dir = model_dir
        self.top_n = top_n
        self.default_image_size = image_size
        self._model: Optional[Any] = None
        self._metadata: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def load(self) -> None:
        """Load artifacts if not already loaded.

        Raises:
            ModelNotFoundError: If no trained model is present.
            ModelLoadError: If the artifacts cannot be read.
        """
        with self._lock:
            if self._model is not None:
                return
            if not check_model_exists(self.model_dir):
                logger.error(f"Model not found in {self.model_dir}")
                raise ModelNotFoundError(self.model_dir)
            try:
                self._model, self._metadata = load_model_artifacts(self.model_dir)
            except Exception as e:
                logger.error(f"Failed to load model: {e}", exc_info=True)
                raise ModelLoadError(self.model_dir, e) from e

    @property
    def labels(self) -> List[str]:
        self.load()
        return self._metadata.get("labels") or [str(label) for label in self._model.classes_]

    @property
    def image_size(self) -> int:
        self.load()
        return int(self._metadata.get("image_size", self.default_image_size))

    def scores(self, image_bytes: bytes) -> np.ndarray:
        """Raw decision scores, one per label."""
        features = decode_image(image_bytes, self.image_size)
        decision = np.asarray(self._model.decision_function(features.reshape(1, -1)))[0]
        if decision.ndim == 0:
            # Binary estimators return a single margin for the positive class.
            decision = np.array([-decision, decision])
        return decision

    def predict_top(self, image_bytes: bytes) -> List[Tuple[str, float]]:
        return top_classes(self.scores(image_bytes), self.labels, self.top_n)

    async def classify(self, image_bytes: bytes) -> str:
        """Most likely label for the picture in ``image_bytes``."""
        results = await asyncio.to_thread(self.predict_top, image_bytes)
        label, probability = results[0]
        logger.info(
            "Classified picture",
            extra={"label": label, "probability": round(probability, 4)},
        )
        return label
