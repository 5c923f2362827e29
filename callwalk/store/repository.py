"""Step/product repository over a ``Storage`` with debounced persistence."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from callwalk.errors import ProductNotFoundError, StepNotFoundError, StorageError
from callwalk.script.navigation import StepSource
from callwalk.script.renderer import anchor_segments
from callwalk.script.steps import Alert, Product, Step, Tabulation, utcnow
from .bundle import ImportResult, import_bundle
from .storage import Storage
from .sync import (
    NOTIFY_DEBOUNCE_SECONDS,
    SAVE_DEBOUNCE_SECONDS,
    ChangeChannel,
    ChangeKind,
    RemoteChangeWatcher,
    Scheduler,
    UpdateNotifier,
    WriteQueue,
)

logger = logging.getLogger(__name__)

STEPS_KEY = "script_steps"
PRODUCTS_KEY = "products"


@dataclass
class _Caches:
    steps_by_product: Dict[str, List[Step]] = field(default_factory=dict)
    product_by_id: Dict[str, Product] = field(default_factory=dict)

    def clear(self) -> None:
        self.steps_by_product.clear()
        self.product_by_id.clear()


class StepRepository(StepSource):
    """Holds all steps and products; every mutation queues a write and a notification.

    Reads always see the in-memory state, so a mutation is visible to the next
    read even before the debounced flush reaches storage.
    """

    def __init__(
        self,
        storage: Storage,
        scheduler: Optional[Scheduler] = None,
        channel: Optional[ChangeChannel] = None,
        save_delay: float = SAVE_DEBOUNCE_SECONDS,
        notify_delay: float = NOTIFY_DEBOUNCE_SECONDS,
        id_factory: Optional[Callable[[str], str]] = None,
    ):
        self.storage = storage
        self.scheduler = scheduler or Scheduler()
        self.channel = channel or ChangeChannel()
        self.writes = WriteQueue(storage, self.scheduler, delay=save_delay)
        self.notifier = UpdateNotifier(storage, self.scheduler, self.channel, delay=notify_delay)
        self.watcher = RemoteChangeWatcher(storage, self.channel, local=self.notifier)
        self._id_factory = id_factory or _default_id_factory()
        self._caches = _Caches()
        self._steps: List[Step] = []
        self._products: List[Product] = []
        self._load()

    # ===== Loading =====

    def _load(self) -> None:
        self._steps = self._parse_list(STEPS_KEY, Step.from_dict)
        self._products = self._parse_list(PRODUCTS_KEY, Product.from_dict)
        self._caches.clear()

    def _parse_list(self, key: str, parse: Callable[[dict], Any]) -> List[Any]:
        records = []
        for position, item in enumerate(self._read_list(key)):
            try:
                records.append(parse(item))
            except (AttributeError, TypeError, ValueError) as exc:
                logger.error(
                    "Skipping corrupt %s record %d (%s): %s", key, position, item.get("id"), exc
                )
        return records

    def _read_list(self, key: str) -> List[dict]:
        try:
            raw = self.storage.get(key)
        except StorageError as exc:
            logger.error("Could not load %s: %s", key, exc)
            return []
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, dict)]

    def reload(self) -> None:
        """Flush own pending writes, then re-read everything from storage."""
        self.writes.flush()
        self._load()

    def poll_remote(self) -> bool:
        """Re-read when another consumer has changed the shared storage.

        Writes are whole lists per key, last writer wins. Pending local writes
        are flushed before the re-read, so they overwrite a newer remote write
        to the same key; the remote consumer picks the result up on its own
        next poll.
        """
        if self.watcher.poll():
            self.reload()
            return True
        return False

    def pump(self) -> int:
        """Run due timers (write flush, update notification)."""
        return self.scheduler.run_pending()

    def flush(self) -> None:
        self.writes.flush()
        self.notifier.flush()

    def close(self) -> None:
        self.flush()

    # ===== Steps =====

    def get_steps(self, product_id: Optional[str] = None) -> List[Step]:
        if product_id is None:
            return list(self._steps)
        cached = self._caches.steps_by_product.get(product_id)
        if cached is None:
            cached = [step for step in self._steps if step.product_id == product_id]
            self._caches.steps_by_product[product_id] = cached
        return list(cached)

    def get_step(self, step_id: str, product_id: Optional[str] = None) -> Optional[Step]:
        if product_id is not None:
            for step in self.get_steps(product_id):
                if step.id == step_id:
                    return step
            return None
        for step in self._steps:
            if step.id == step_id:
                return step
        return None

    def search_steps(self, product_id: str, query: str) -> List[Step]:
        needle = query.strip().lower()
        if not needle:
            return []
        return [step for step in self.get_steps(product_id) if needle in step.title.lower()]

    def create_step(self, step: Step) -> Step:
        now = utcnow()
        step_id = step.id or self._id_factory("step")
        new_step = step.copy(
            id=step_id,
            created_at=step.created_at or now,
            updated_at=now,
            content_segments=anchor_segments(step.content, step.content_segments),
        )
        self._steps.append(new_step)
        self._steps_changed(ChangeKind.STEP, [new_step.id])
        return new_step

    def update_step(self, step: Step) -> Step:
        index = self._step_index(step.id, step.product_id)
        previous = self._steps[index]
        segments = step.content_segments
        if step.content != previous.content or any(not seg.anchored for seg in segments):
            segments = anchor_segments(step.content, segments)
        updated = step.copy(
            content_segments=segments,
            created_at=previous.created_at,
            updated_at=utcnow(),
        )
        self._steps[index] = updated
        self._steps_changed(ChangeKind.STEP, [updated.id])
        return updated

    def delete_step(self, step_id: str, product_id: Optional[str] = None) -> None:
        index = self._step_index(step_id, product_id)
        del self._steps[index]
        self._steps_changed(ChangeKind.STEP, [step_id])

    def replace_product_steps(self, product_id: str, steps: List[Step]) -> None:
        """Drop every step of ``product_id`` and insert ``steps`` (used by import)."""
        kept = [step for step in self._steps if step.product_id != product_id]
        now = utcnow()
        fresh = [
            step.copy(
                product_id=product_id,
                created_at=step.created_at or now,
                updated_at=now,
                content_segments=anchor_segments(step.content, step.content_segments),
            )
            for step in steps
        ]
        self._steps = kept + fresh
        self._steps_changed(ChangeKind.IMPORT, [product_id])

    def _step_index(self, step_id: str, product_id: Optional[str]) -> int:
        for index, existing in enumerate(self._steps):
            if existing.id != step_id:
                continue
            if product_id is None or existing.product_id == product_id:
                return index
        raise StepNotFoundError(step_id)

    def _steps_changed(self, kind: ChangeKind, ids: List[str]) -> None:
        self.writes.save(STEPS_KEY, [step.to_dict() for step in self._steps])
        self._caches.clear()
        self.notifier.notify(kind, ids)

    # ===== Annotations =====

    def set_alert(self, step_id: str, alert: Optional[Alert], product_id: Optional[str] = None) -> Step:
        index = self._step_index(step_id, product_id)
        self._steps[index] = self._steps[index].copy(alert=alert, updated_at=utcnow())
        self._steps_changed(ChangeKind.ANNOTATION, [step_id])
        return self._steps[index]

    def clear_alert(self, step_id: str, product_id: Optional[str] = None) -> Step:
        return self.set_alert(step_id, None, product_id)

    def set_tabulations(
        self, step_id: str, tabulations: List[Tabulation], product_id: Optional[str] = None
    ) -> Step:
        index = self._step_index(step_id, product_id)
        self._steps[index] = self._steps[index].copy(
            tabulations=list(tabulations), updated_at=utcnow()
        )
        self._steps_changed(ChangeKind.ANNOTATION, [step_id])
        return self._steps[index]

    # ===== Products =====

    def get_products(self) -> List[Product]:
        return list(self._products)

    def get_product(self, product_id: str) -> Optional[Product]:
        cached = self._caches.product_by_id.get(product_id)
        if cached is not None:
            return cached
        for product in self._products:
            if product.id == product_id:
                self._caches.product_by_id[product_id] = product
                return product
        return None

    def find_product(self, key: str) -> Optional[Product]:
        """Look a product up by id, then by case-insensitive name."""
        product = self.get_product(key)
        if product is not None:
            return product
        lowered = key.strip().lower()
        for candidate in self._products:
            if candidate.name.lower() == lowered:
                return candidate
        return None

    def create_product(self, product: Product) -> Product:
        new_product = replace(
            product,
            id=product.id or self._id_factory("prod"),
            created_at=product.created_at or utcnow(),
        )
        self._products.append(new_product)
        self._products_changed([new_product.id])
        return new_product

    def update_product(self, product: Product) -> Product:
        index = self._product_index(product.id)
        self._products[index] = product
        self._products_changed([product.id])
        return product

    def upsert_product(self, product: Product) -> bool:
        """Insert or replace by id. Returns True when the product is new."""
        for index, existing in enumerate(self._products):
            if existing.id == product.id:
                self._products[index] = product
                self._products_changed([product.id])
                return False
        self._products.append(product)
        self._products_changed([product.id])
        return True

    def delete_product(self, product_id: str) -> None:
        index = self._product_index(product_id)
        del self._products[index]
        self._products_changed([product_id])

    def _product_index(self, product_id: str) -> int:
        for index, existing in enumerate(self._products):
            if existing.id == product_id:
                return index
        raise ProductNotFoundError(product_id)

    def _products_changed(self, ids: List[str]) -> None:
        self.writes.save(PRODUCTS_KEY, [product.to_dict() for product in self._products])
        self._caches.clear()
        self.notifier.notify(ChangeKind.PRODUCT, ids)

    # ===== Import =====

    def import_from_json(self, bundle: dict) -> ImportResult:
        return import_bundle(self, bundle)


def _default_id_factory() -> Callable[[str], str]:
    counter = itertools.count(1)

    def make(prefix: str) -> str:
        return f"{prefix}-{int(time.time() * 1000)}-{next(counter)}"

    return make
