"""Image classifier training module.

This module trains the model that assigns product pictures to taxonomy
classes. It reads a CSV of labelled pictures, decodes them into the same
feature vectors used at serving time, fits a multinomial logistic regression
and saves the artifacts with joblib.
"""

import logging
from pathlib import Path
from typing import Tuple

import numpy as np
import pandas as pd
from sklearn.linear_model import LogisticRegression

from simrec.recommender.classifier import DEFAULT_IMAGE_SIZE, decode_image
from simrec.recommender.utils import save_model_artifacts

# Configure module logger
logger = logging.getLogger(__name__)

# Model configuration constants
DEFAULT_MAX_ITER = 1000
DEFAULT_C = 1.0
DEFAULT_RANDOM_STATE = 42


def load_labelled_images(
    csv_path: str,
    image_col: str = "image_path",
    label_col: str = "label",
    image_size: int = DEFAULT_IMAGE_SIZE,
) -> Tuple[np.ndarray, np.ndarray]:
    """Load labelled pictures listed in a CSV file.

    Relative image paths are resolved against the CSV file's directory.

    Args:
        csv_path: Path to CSV file with an image path and a label column.
        image_col: Name of the column holding image paths.
        label_col: Name of the column holding class labels.
        image_size: Side length images are resized to.

    Returns:
        A tuple of (feature matrix of shape (n, 3 * size * size), labels).

    Raises:
        FileNotFoundError: If the CSV or an image file does not exist.
        ValueError: If the CSV is missing columns, is empty, or has fewer
            than two distinct labels.
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading labelled images from {csv_path}")
    df = pd.read_csv(csv_file)

    required_columns = {image_col, label_col}
    if not required_columns.issubset(df.columns):
        missing = required_columns - set(df.columns)
        raise ValueError(f"CSV missing required columns: {missing}")

    if df.empty:
        raise ValueError("Cannot train on an empty CSV")

    if df[label_col].nunique() < 2:
        raise ValueError("Need at least two distinct labels to train a classifier")

    features = []
    for image_path in df[image_col]:
        path = Path(image_path)
        if not path.is_absolute():
            path = csv_file.parent / path
        if not path.exists():
            raise FileNotFoundError(f"Image file not found: {path}")
        features.append(decode_image(path.read_bytes(), image_size))

    labels = df[label_col].astype(str).to_numpy()
    logger.info(f"Loaded {len(features)} images across {df[label_col].nunique()} labels")

    return np.stack(features), labels


def train_image_classifier(
    features: np.ndarray,
    labels: np.ndarray,
    c: float = DEFAULT_C,
    max_iter: int = DEFAULT_MAX_ITER,
    random_state: int = DEFAULT_RANDOM_STATE,
) -> LogisticRegression:
    """Fit a logistic regression classifier on decoded pictures.

    Raises:
        ValueError: If features and labels disagree in length.
    """
    if len(features) != len(labels):
        raise ValueError(
            f"Got {len(features)} feature rows but {len(labels)} labels"
        )

    logger.info(f"Training classifier on {len(features)} images, C={c}, max_iter={max_iter}")

    model = LogisticRegression(C=c, max_iter=max_iter, random_state=random_state)
    model.fit(features, labels)

    logger.info(f"Training accuracy: {model.score(features, labels):.4f}")
    return model


def train_classifier_from_csv(
    csv_path: str,
    output_dir: str = "models",
    image_size: int = DEFAULT_IMAGE_SIZE,
    c: float = DEFAULT_C,
    max_iter: int = DEFAULT_MAX_ITER,
    random_state: int = DEFAULT_RANDOM_STATE,
) -> LogisticRegression:
    """Train a picture classifier from a labelled CSV and save it.

    This is the main entry point for training: it loads and decodes the
    pictures, fits the model and writes the artifacts that
    ``ModelClassifier`` loads at serving time.

    Args:
        csv_path: CSV with ``image_path`` and ``label`` columns.
        output_dir: Directory where model artifacts will be saved.
        image_size: Side length pictures are resized to.
        c: Inverse regularization strength.
        max_iter: Maximum solver iterations.
        random_state: Random seed for reproducibility.

    Returns:
        The fitted classifier.

    Example:
        >>> model = train_classifier_from_csv("data/labelled.csv", image_size=64)
        >>> print(model.classes_)
    """
    logger.info("=" * 60)
    logger.info("Starting picture classifier training")
    logger.info("=" * 60)

    try:
        features, labels = load_labelled_images(csv_path, image_size=image_size)
        model = train_image_classifier(
            features, labels, c=c, max_iter=max_iter, random_state=random_state
        )
        save_model_artifacts(
            model,
            output_dir,
            image_size=image_size,
            extra_metadata={"num_images": int(len(labels))},
        )

        logger.info("=" * 60)
        logger.info("Training completed successfully!")
        logger.info("=" * 60)
        return model

    except Exception as e:
        logger.error(f"Training failed: {e}", exc_info=True)
        raise
