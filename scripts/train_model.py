"""Command-line interface for training the picture classifier.

This script trains the model that assigns product pictures to classes from
a CSV listing labelled pictures.

Example:
    Train a model with default settings:
        $ python scripts/train_model.py data/labelled_pictures.csv

    Train with custom parameters:
        $ python scripts/train_model.py data/labelled_pictures.csv \\
            --output-dir models/production \\
            --image-size 64 \\
            --max-iter 2000
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from simrec.recommender.classifier import DEFAULT_IMAGE_SIZE
from simrec.recommender.train import (
    DEFAULT_C,
    DEFAULT_MAX_ITER,
    DEFAULT_RANDOM_STATE,
    train_classifier_from_csv,
)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the script."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Train the SimRec picture classifier from labelled pictures.",
    )
    parser.add_argument(
        "csv_path",
        type=str,
        help="CSV with columns image_path, label (paths relative to the CSV)",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="models",
        help="Directory where model artifacts will be saved (default: models)",
    )
    parser.add_argument(
        "--image-size",
        type=int,
        default=DEFAULT_IMAGE_SIZE,
        help=f"Side length pictures are resized to (default: {DEFAULT_IMAGE_SIZE})",
    )
    parser.add_argument(
        "--c",
        type=float,
        default=DEFAULT_C,
        help=f"Inverse regularization strength (default: {DEFAULT_C})",
    )
    parser.add_argument(
        "--max-iter",
        type=int,
        default=DEFAULT_MAX_ITER,
        help=f"Maximum solver iterations (default: {DEFAULT_MAX_ITER})",
    )
    parser.add_argument(
        "--random-state",
        type=int,
        default=DEFAULT_RANDOM_STATE,
        help=f"Random seed for reproducibility (default: {DEFAULT_RANDOM_STATE})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_arguments()
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if not Path(args.csv_path).is_file():
        logger.error(f"CSV file not found: {args.csv_path}")
        sys.exit(1)

    try:
        model = train_classifier_from_csv(
            csv_path=args.csv_path,
            output_dir=args.output_dir,
            image_size=args.image_size,
            c=args.c,
            max_iter=args.max_iter,
            random_state=args.random_state,
        )
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Training failed: {e}")
        sys.exit(1)

    print(f"\nTrained classifier with labels: {', '.join(map(str, model.classes_))}")
    print(f"Artifacts saved to: {args.output_dir}")


if __name__ == "__main__":
    main()
