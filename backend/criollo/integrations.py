"""
Collaborators the floor core consumes but does not own.

ProductCatalog and CustomerDirectory are read-only lookups. Notifications go
through NotificationDispatcher, which queues them after a unit of work commits
and delivers them later through a NotificationGateway; delivery failures are
logged and retried, never propagated into the core.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Deque, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


# ---------- Product catalog ----------

@dataclass
class Product:
    id: str
    name: str
    price: Decimal
    is_available: bool = True
    stock_quantity: int = 0


class ProductCatalog(ABC):
    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]:
        """Current catalog entry, or None for unknown products."""
        ...


class InMemoryProductCatalog(ProductCatalog):
    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {p.id: p for p in products}

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def upsert(self, product: Product) -> None:
        self._products[product.id] = product

    def list_products(self) -> List[Product]:
        return sorted(self._products.values(), key=lambda p: p.id)


# ---------- Customer directory ----------

class CustomerDirectory(ABC):
    @abstractmethod
    def exists(self, customer_id: str) -> bool:
        ...


class InMemoryCustomerDirectory(CustomerDirectory):
    def __init__(self, customer_ids: Iterable[str] = ()):
        self._customers = set(customer_ids)

    def exists(self, customer_id: str) -> bool:
        return customer_id in self._customers

    def add(self, customer_id: str) -> None:
        self._customers.add(customer_id)


# ---------- Notifications ----------

class NotificationGateway(ABC):
    @abstractmethod
    def send(self, kind: str, recipient: str, payload: Dict[str, Any]) -> bool:
        """Deliver one notification. Returns False (or raises) on failure."""
        ...


class LoggingNotificationGateway(NotificationGateway):
    """Default gateway: records notifications in the application log."""

    def send(self, kind: str, recipient: str, payload: Dict[str, Any]) -> bool:
        logger.info("Notification %s -> %s: %s", kind, recipient, payload)
        return True


@dataclass
class Notification:
    kind: str
    recipient: str
    payload: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 0


class NotificationDispatcher:
    """Out-of-band notification queue with bounded retries."""

    def __init__(self, gateway: NotificationGateway, max_attempts: int = 3):
        self.gateway = gateway
        self.max_attempts = max_attempts
        self._queue: Deque[Notification] = deque()
        self._lock = threading.Lock()
        self.dead_letters: List[Notification] = []

    def publish(self, kind: str, recipient: Optional[str], payload: Dict[str, Any]) -> None:
        """Queue a notification. Never raises and never blocks on delivery."""
        if not recipient:
            return
        with self._lock:
            self._queue.append(Notification(kind=kind, recipient=recipient, payload=payload))

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def flush(self) -> int:
        """
        Try to deliver everything queued so far.

        Failed notifications go back to the queue until they reach
        max_attempts, then move to dead_letters. Returns the number delivered.
        """
        with self._lock:
            batch = list(self._queue)
            self._queue.clear()

        delivered = 0
        retry = []
        for note in batch:
            note.attempts += 1
            try:
                ok = self.gateway.send(note.kind, note.recipient, note.payload)
            except Exception as exc:
                logger.warning("Notification %s to %s raised: %s", note.kind, note.recipient, exc)
                ok = False
            if ok:
                delivered += 1
            elif note.attempts >= self.max_attempts:
                logger.error(
                    "Giving up on notification %s to %s after %d attempts",
                    note.kind, note.recipient, note.attempts,
                )
                self.dead_letters.append(note)
            else:
                retry.append(note)

        if retry:
            with self._lock:
                self._queue.extendleft(reversed(retry))
        return delivered
