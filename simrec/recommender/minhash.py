"""MinHash-style sketches of a user's viewed products.

A user's history is reduced to a bounded set of 64-bit hash values so that
histories can be compared approximately through the fingerprint index.

Note: the sketch keeps the K *largest* distinct hash values, not the K
smallest used by textbook bottom-k MinHash. Either choice is a uniform
sample of the hashed set; the largest-K behaviour is kept as is until a
decision is made to switch.
"""

import hashlib
import logging
from bisect import insort
from typing import Iterable, List

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_SKETCH_CAPACITY = 32
DEFAULT_HASH_SALT = b"simrec-minhash"


def hash_element(element: str, salt: bytes = DEFAULT_HASH_SALT) -> int:
    """Salted, unsigned 64-bit hash of a product id."""
    digest = hashlib.blake2b(element.encode("utf-8"), digest_size=8, salt=salt).digest()
    return int.from_bytes(digest, "big")


class BoundedMaxQueue:
    """Priority queue of at most ``capacity`` integers, largest first.

    Values are held in ascending order. Once full, a pushed value larger
    than the smallest held value evicts it; anything else is rejected.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._values: List[int] = []

    def __len__(self) -> int:
        return len(self._values)

    def push(self, value: int) -> bool:
        """Insert ``value``; returns False if it was not retained."""
        if len(self._values) < self.capacity:
            insort(self._values, value)
            return True
        if value <= self._values[0]:
            return False
        self._values.pop(0)
        insort(self._values, value)
        return True

    def peek_max(self) -> int:
        if not self._values:
            raise IndexError("peek from an empty queue")
        return self._values[-1]

    def pop_max(self) -> int:
        if not self._values:
            raise IndexError("pop from an empty queue")
        return self._values.pop()

    def values_desc(self) -> List[int]:
        """Held values in pop order without consuming them."""
        return self._values[::-1]


class MinHashSketcher:
    """Builds bounded hash signatures of product-id sets."""

    def __init__(
        self,
        capacity: int = DEFAULT_SKETCH_CAPACITY,
        salt: bytes = DEFAULT_HASH_SALT,
    ):
        self.capacity = capacity
        self.salt = salt

    def sketch_queue(self, elements: Iterable[str]) -> BoundedMaxQueue:
        """Hash ``elements`` into a bounded queue, skipping repeated hashes."""
        queue = BoundedMaxQueue(self.capacity)
        seen = set()
        for element in elements:
            value = hash_element(element, self.salt)
            if value in seen:
                continue
            seen.add(value)
            queue.push(value)
        return queue

    def sketch(self, elements: Iterable[str]) -> List[int]:
        """Signature of ``elements``, largest hash first.

        Args:
            elements: Distinct product ids of one user.

        Returns:
            Up to ``capacity`` distinct hash values in descending order.
        """
        signature = self.sketch_queue(elements).values_desc()
        logger.debug("Sketched history", extra={"signature_size": len(signature)})
        return signature
