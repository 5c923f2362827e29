"""Exception hierarchy shared by the script engine and the store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class CallwalkError(Exception):
    """Base class for every error raised by callwalk."""


class BundleValidationError(CallwalkError):
    """The import bundle is unusable as a whole."""


@dataclass
class ImportIssue:
    """A single item skipped during import."""

    product: str
    step_key: Optional[str]
    reason: str

    def describe(self) -> str:
        if self.step_key is None:
            return f"{self.product}: {self.reason}"
        return f"{self.product}/{self.step_key}: {self.reason}"


class MissingStepError(CallwalkError):
    """A step id that does not resolve (dangling link or deleted step).

    Returned by ``NavigationController.resolve`` rather than raised.
    """

    def __init__(self, step_id: str, product_id: Optional[str] = None):
        self.step_id = step_id
        self.product_id = product_id
        where = f" in product {product_id}" if product_id else ""
        super().__init__(f"Step not found: {step_id}{where}")


class ProductNotFoundError(CallwalkError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class StepNotFoundError(CallwalkError):
    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Step not found: {step_id}")


class NavigationError(CallwalkError):
    """Invalid transition request (unknown button, advancing from Terminal)."""


class StorageError(CallwalkError):
    """A storage backend failed to read or write a key."""


class StorageQuotaError(StorageError):
    def __init__(self, key: str, size: int, limit: int):
        self.key = key
        self.size = size
        self.limit = limit
        super().__init__(f"Storage quota exceeded for {key}: {size} > {limit} bytes")
