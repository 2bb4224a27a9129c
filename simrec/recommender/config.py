"""Configuration for the similar-products recommender.

All tunables live on a single frozen dataclass that is passed into each
component. Every field can be overridden from the environment using
``SIMREC_<FIELD_NAME>``, e.g. ``SIMREC_NUM_RECOMMENDATIONS=8``.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

DAY_MS = 24 * 60 * 60 * 1_000
ENV_PREFIX = "SIMREC_"


@dataclass(frozen=True)
class RecommenderConfig:
    """Tunable constants for weighting, sampling, sketching and serving.

    Attributes:
        history_decay: Decay rate for the recency weighting of classes.
        history_limit: Number of history rows read per request.
        num_recommendations: Length of the final recommendation list.
        content_quota: Items requested from content-based sampling.
        collab_quota: Collaborative quota before content picks are deducted.
        sketch_capacity: Maximum number of hash values kept per signature.
        band_size: Signature values XOR-ed into one fingerprint.
        neighbor_cap: Maximum number of neighbours used for CF.
        history_max_age_ms: Retention window for view history.
        reclassify_after_ms: Age after which a stored class is refreshed.
        hash_salt: Salt for the 64-bit element hash (at most 16 bytes).
        max_draw_retries: Redraws allowed before the deterministic fallback.
    """

    history_decay: float = 0.1
    history_limit: int = 40
    num_recommendations: int = 6
    content_quota: int = 4
    collab_quota: int = 6
    sketch_capacity: int = 32
    band_size: int = 4
    neighbor_cap: int = 20
    history_max_age_ms: int = 27 * DAY_MS
    reclassify_after_ms: int = 7 * DAY_MS
    hash_salt: str = "simrec-minhash"
    max_draw_retries: int = 64

    database_url: str = "sqlite+aiosqlite:///simrec.db"
    model_dir: str = "models"
    image_size: int = 224
    image_fetch_timeout_s: float = 10.0

    cookie_name: str = "id-cookie"
    cookie_max_age_s: int = 86_400 * 365
    cookie_secure: bool = True
    purge_interval_s: float = 86_400.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        positive = (
            "history_limit",
            "num_recommendations",
            "sketch_capacity",
            "band_size",
            "neighbor_cap",
            "history_max_age_ms",
            "max_draw_retries",
            "image_size",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        if self.history_decay <= 0:
            raise ValueError(f"history_decay must be positive, got {self.history_decay}")
        if self.content_quota < 0 or self.collab_quota < 0:
            raise ValueError("content_quota and collab_quota must not be negative")
        if len(self.hash_salt.encode("utf-8")) > 16:
            raise ValueError("hash_salt must encode to at most 16 bytes")
        if self.purge_interval_s < 0:
            raise ValueError("purge_interval_s must not be negative")

    @property
    def salt_bytes(self) -> bytes:
        return self.hash_salt.encode("utf-8")

    def with_overrides(self, **overrides: Any) -> "RecommenderConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Dict[str, str]] = None,
        prefix: str = ENV_PREFIX,
    ) -> "RecommenderConfig":
        """Build a config from ``SIMREC_*`` environment variables.

        Args:
            environ: Mapping to read from (default: ``os.environ``).
            prefix: Variable name prefix.

        Returns:
            Config with every variable present applied over the defaults.

        Raises:
            ValueError: If a variable cannot be parsed or a value is invalid.
        """
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}

        for field in fields(cls):
            raw = environ.get(prefix + field.name.upper())
            if raw is None:
                continue
            overrides[field.name] = _coerce(field.name, raw, type(field.default))

        return cls(**overrides)


def _coerce(name: str, raw: str, kind: type) -> Any:
    if kind is bool:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    try:
        return kind(raw)
    except ValueError as e:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e
