"""Recency-weighted class distribution.

Turns the class of the product being viewed plus the classes of the user's
recent views into a probability distribution over classes. Each position
receives the mass an exponential distribution assigns to one unit interval,
so the current product (position 0) gets the largest share and older views
fade out.
"""

import logging
from typing import Dict, Sequence

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_HISTORY_DECAY = 0.1


def position_contributions(count: int, decay: float = DEFAULT_HISTORY_DECAY) -> np.ndarray:
    """Weight contribution for positions ``0..count-1``.

    Position i contributes ``(e^decay - 1) / e^(decay * (i + 1))``, the
    integral of the exponential density over ``[i, i + 1]``.
    """
    positions = np.arange(1, count + 1, dtype=np.float64)
    return (np.exp(decay) - 1.0) / np.exp(decay * positions)


def calc_class_weights(
    current_class: str,
    history_classes: Sequence[str],
    decay: float = DEFAULT_HISTORY_DECAY,
) -> Dict[str, float]:
    """Build the normalized class distribution for a request.

    Args:
        current_class: Class of the product being viewed. Always placed first.
        history_classes: Classes of previously viewed products, most recent
            first.
        decay: Decay rate of the recency weighting.

    Returns:
        Ordered mapping of class to weight. The current class is the first
        key, weights are non-negative and sum to 1.

    Example:
        >>> calc_class_weights("n04254680", [])
        {'n04254680': 1.0}
    """
    classes = [current_class, *history_classes]
    contributions = position_contributions(len(classes), decay)

    weights: Dict[str, float] = {}
    for classification, contribution in zip(classes, contributions):
        weights[classification] = weights.get(classification, 0.0) + float(contribution)

    total = float(contributions.sum())
    class_weights = {classification: weight / total for classification, weight in weights.items()}

    logger.debug(
        "Computed class weights",
        extra={
            "current_class": current_class,
            "history_length": len(history_classes),
            "num_classes": len(class_weights),
        },
    )

    return class_weights
