"""Import/export of script bundles and CSV reports.

Bundle shape::

    {"marcas": {"<ProductName>": {"<stepKey>": {
        "id": str, "title": str, "body": str,
        "buttons": [{"label": str, "next": str | "fim", "primary": bool}]
    }}}}
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from datetime import datetime
import io
import logging
import re
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from callwalk.errors import BundleValidationError, ImportIssue, ProductNotFoundError
from callwalk.script.steps import (
    END_OF_SCRIPT,
    Alert,
    Button,
    ButtonVariant,
    ContentSegment,
    Product,
    Step,
    StepFormatting,
    Tabulation,
    utcnow,
)

if TYPE_CHECKING:  # pragma: no cover
    from .repository import StepRepository

logger = logging.getLogger(__name__)

FIRST_STEP_MARKER = "abordagem"
CATEGORIES = {"habitacional", "comercial", "outros"}


@dataclass
class ImportResult:
    product_count: int = 0
    step_count: int = 0
    issues: List[ImportIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


def product_id_for(name: str) -> str:
    return "prod-" + re.sub(r"\s+", "-", name.strip().lower())


def validate_bundle(bundle: Any) -> Dict[str, Any]:
    """Check the top-level shape and return the ``marcas`` mapping."""
    if not isinstance(bundle, dict):
        raise BundleValidationError("Bundle must be a JSON object")
    products = bundle.get("marcas")
    if products is None:
        raise BundleValidationError('Bundle is missing the "marcas" object')
    if not isinstance(products, dict):
        raise BundleValidationError('"marcas" must be an object')
    if not products:
        raise BundleValidationError('"marcas" must contain at least one product')
    return products


def import_bundle(repository: "StepRepository", bundle: Any) -> ImportResult:
    """Import every valid product of ``bundle``; each product is fully replaced."""
    products = validate_bundle(bundle)
    result = ImportResult()
    used_ids: Dict[str, str] = {}

    for product_name, raw_steps in products.items():
        if not isinstance(raw_steps, dict) or not raw_steps:
            _skip(result, ImportIssue(product_name, None, "product must be a non-empty object"))
            continue

        product_id = product_id_for(product_name)
        if product_id in used_ids:
            reason = f"product id {product_id} already used by {used_ids[product_id]}"
            _skip(result, ImportIssue(product_name, None, reason))
            continue
        steps: List[Step] = []
        seen = set()
        for position, (step_key, raw_step) in enumerate(raw_steps.items()):
            step = _parse_step(product_name, product_id, step_key, raw_step, position, result)
            if step is None:
                continue
            if step.id in seen:
                _skip(result, ImportIssue(product_name, step_key, f"duplicate step id {step.id}"))
                continue
            seen.add(step.id)
            steps.append(step)

        if not steps:
            _skip(result, ImportIssue(product_name, None, "no valid steps"))
            continue

        used_ids[product_id] = product_name
        repository.replace_product_steps(product_id, steps)
        first = _first_step(steps)
        existing = repository.get_product(product_id)
        category = product_name.lower() if product_name.lower() in CATEGORIES else "outros"
        product = Product(
            id=product_id,
            name=product_name,
            script_id=first.id,
            category=existing.category if existing else category,
            is_active=True,
            attendance_types=existing.attendance_types if existing else [],
            person_types=existing.person_types if existing else [],
            description=existing.description if existing else None,
            created_at=existing.created_at if existing else utcnow(),
        )
        repository.upsert_product(product)
        result.product_count += 1
        result.step_count += len(steps)
        logger.info("Imported %d step(s) for %s", len(steps), product_name)

    return result


def _skip(result: ImportResult, issue: ImportIssue) -> None:
    logger.warning("Skipping %s", issue.describe())
    result.issues.append(issue)


def _parse_step(
    product_name: str,
    product_id: str,
    step_key: str,
    raw: Any,
    position: int,
    result: ImportResult,
) -> Optional[Step]:
    if not isinstance(raw, dict):
        _skip(result, ImportIssue(product_name, step_key, "step must be an object"))
        return None
    step_id = str(raw.get("id") or "").strip()
    title = str(raw.get("title") or "").strip()
    if not step_id or not title:
        _skip(result, ImportIssue(product_name, step_key, "step requires non-empty id and title"))
        return None
    if step_id == END_OF_SCRIPT:
        reason = f'"{END_OF_SCRIPT}" is reserved for the end of the script'
        _skip(result, ImportIssue(product_name, step_key, reason))
        return None

    content = str(raw.get("body") or raw.get("content") or "")
    if not content.strip():
        logger.warning("Empty content for step %s in %s", step_id, product_name)

    buttons = [
        _parse_button(step_id, index, item)
        for index, item in enumerate(raw.get("buttons") or [])
        if isinstance(item, dict)
    ]
    alert = raw.get("alert")
    formatting = raw.get("formatting")
    order = raw.get("order")
    return Step(
        id=step_id,
        title=title,
        content=content,
        buttons=buttons,
        product_id=product_id,
        order=order if isinstance(order, int) and order > 0 else position + 1,
        content_segments=[
            ContentSegment.from_dict(item)
            for item in raw.get("contentSegments") or []
            if isinstance(item, dict)
        ],
        tabulations=[
            _parse_tabulation(step_id, index, item)
            for index, item in enumerate(raw.get("tabulations") or [])
            if isinstance(item, dict)
        ],
        alert=Alert.from_dict(alert) if isinstance(alert, dict) else None,
        formatting=StepFormatting.from_dict(formatting) if isinstance(formatting, dict) else None,
    )


def _parse_button(step_id: str, index: int, raw: Dict[str, Any]) -> Button:
    target = raw.get("next", raw.get("nextStepId"))
    primary = bool(raw.get("primary"))
    variant = ButtonVariant.PRIMARY if primary else ButtonVariant.SECONDARY
    if raw.get("variant"):
        try:
            variant = ButtonVariant(raw["variant"])
        except ValueError:
            pass
    return Button(
        id=f"btn-{step_id}-{index}",
        label=str(raw.get("label") or ""),
        next_step_id=None if not target or target == END_OF_SCRIPT else str(target),
        order=index,
        primary=primary,
        variant=variant,
    )


def _parse_tabulation(step_id: str, index: int, raw: Dict[str, Any]) -> Tabulation:
    return Tabulation(
        id=str(raw.get("id") or f"tab-{step_id}-{index}"),
        name=str(raw.get("name") or ""),
        description=str(raw.get("description") or ""),
    )


def _first_step(steps: List[Step]) -> Step:
    for step in steps:
        if FIRST_STEP_MARKER in step.id.lower() or FIRST_STEP_MARKER in step.title.lower():
            return step
    for step in steps:
        if step.order == 1:
            return step
    return steps[0]


# ===== Export =====


def export_bundle(
    repository: "StepRepository", product_ids: Optional[Iterable[str]] = None
) -> Dict[str, Any]:
    """Export products back to the import schema; re-importing yields the same steps."""
    if product_ids is None:
        products = repository.get_products()
    else:
        products = []
        for product_id in product_ids:
            product = repository.get_product(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            products.append(product)

    marcas: Dict[str, Any] = {}
    for product in products:
        steps = sorted(repository.get_steps(product.id), key=lambda step: step.order)
        exported = {}
        for step in steps:
            if step.id == END_OF_SCRIPT:
                logger.warning(
                    "Not exporting step %s of %s: the id is reserved", step.id, product.name
                )
                continue
            exported[step.id] = _export_step(step)
        marcas[product.name] = exported
    return {"marcas": marcas}


def _export_step(step: Step) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": step.id,
        "title": step.title,
        "body": step.content,
        "order": step.order,
        "buttons": [
            {
                "label": button.label,
                "next": button.next_step_id or END_OF_SCRIPT,
                "primary": button.primary,
            }
            for button in step.sorted_buttons()
        ],
    }
    if step.content_segments:
        data["contentSegments"] = [segment.to_dict() for segment in step.content_segments]
    if step.tabulations:
        data["tabulations"] = [tab.to_dict() for tab in step.tabulations]
    if step.alert:
        data["alert"] = step.alert.to_dict()
    if step.formatting:
        data["formatting"] = step.formatting.to_dict()
    return data


REPORT_COLUMNS = [
    "Step ID",
    "Title",
    "Order",
    "Buttons",
    "Targets",
    "Tabulations",
    "Alert",
]


def export_csv_report(
    repository: "StepRepository",
    product_id: str,
    exported_at: Optional[datetime] = None,
) -> str:
    """Metadata rows, a blank row, then one row per step. Quoting follows RFC 4180."""
    product = repository.get_product(product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    steps = sorted(repository.get_steps(product_id), key=lambda step: step.order)
    exported_at = exported_at or utcnow()

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n")
    writer.writerow(["Script report"])
    writer.writerow(["Product", product.name])
    writer.writerow(["Category", product.category])
    writer.writerow(["First step", product.script_id or ""])
    writer.writerow(["Exported at", exported_at.isoformat()])
    writer.writerow(["Steps", len(steps)])
    writer.writerow([])
    writer.writerow(REPORT_COLUMNS)
    for step in steps:
        buttons = step.sorted_buttons()
        writer.writerow(
            [
                step.id,
                step.title,
                step.order,
                " | ".join(button.label for button in buttons),
                " | ".join(button.next_step_id or END_OF_SCRIPT for button in buttons),
                " | ".join(tab.name for tab in step.tabulations),
                step.alert.message if step.alert else "",
            ]
        )
    return buffer.getvalue()
