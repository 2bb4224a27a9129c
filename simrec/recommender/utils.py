"""Utility functions for classifier model artifacts.

This module provides helpers for saving, locating and loading the joblib
files that make up a trained image classifier.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import joblib

# Configure module logger
logger = logging.getLogger(__name__)

# Model artifact filenames
MODEL_FILENAME = "classifier.joblib"
METADATA_FILENAME = "classifier_metadata.joblib"


def get_model_paths(
    model_dir: str,
    model_filename: str = MODEL_FILENAME,
    metadata_filename: str = METADATA_FILENAME,
) -> Tuple[Path, Path]:
    """Get file paths for model artifacts without loading them.

    Args:
        model_dir: Directory path where artifacts are stored.
        model_filename: Filename for the estimator.
        metadata_filename: Filename for the metadata dictionary.

    Returns:
        A tuple of (estimator path, metadata path).
    """
    model_path = Path(model_dir)
    return model_path / model_filename, model_path / metadata_filename


def check_model_exists(model_dir: str) -> bool:
    """Check if all required model artifacts exist."""
    return all(path.exists() for path in get_model_paths(model_dir))


def save_model_artifacts(
    model: Any,
    output_dir: str,
    image_size: int,
    extra_metadata: Optional[Dict[str, Any]] = None,
) -> Tuple[Path, Path]:
    """Save a trained classifier and its metadata to disk.

    Creates the directory if it doesn't exist.

    Args:
        model: Fitted scikit-learn classifier exposing ``classes_`` and
            ``decision_function``.
        output_dir: Directory path where artifacts will be saved.
        image_size: Side length the model's input images were resized to.
        extra_metadata: Additional values stored alongside.

    Returns:
        Paths of the written estimator and metadata files.

    Raises:
        OSError: If unable to create output directory or save files.
    """
    model_path, metadata_path = get_model_paths(output_dir)
    model_path.parent.mkdir(parents=True, exist_ok=True)

    metadata = {
        "image_size": image_size,
        "labels": [str(label) for label in model.classes_],
        "trained_at": datetime.now(timezone.utc).isoformat(),
    }
    metadata.update(extra_metadata or {})

    logger.info(f"Saving model artifacts to {output_dir}")
    joblib.dump(model, model_path)
    joblib.dump(metadata, metadata_path)
    logger.info(f"Saved classifier with {len(metadata['labels'])} labels to {model_path}")

    return model_path, metadata_path


def load_model_artifacts(model_dir: str) -> Tuple[Any, Dict[str, Any]]:
    """Load a trained classifier and its metadata from disk.

    Args:
        model_dir: Directory path where artifacts are stored.

    Returns:
        A tuple of (estimator, metadata dictionary).

    Raises:
        FileNotFoundError: If any required artifact file is missing.
    """
    model_path, metadata_path = get_model_paths(model_dir)

    for path in (model_path, metadata_path):
        if not path.exists():
            raise FileNotFoundError(f"Model artifact not found: {path}")

    logger.info(f"Loading model artifacts from {model_dir}")
    model = joblib.load(model_path)
    metadata = joblib.load(metadata_path)
    logger.info(
        "Loaded classifier",
        extra={"model_dir": model_dir, "num_labels": len(metadata.get("labels", []))},
    )

    return model, metadata
