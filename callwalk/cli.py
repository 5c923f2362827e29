from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import Settings, load_settings
from .errors import BundleValidationError, ProductNotFoundError
from .logs import setup_logging
from .script.graph import check_graph
from .script.renderer import DEFAULT_CUSTOMER_NAME, Placeholders
from .script.steps import Product
from .store.bundle import export_bundle, export_csv_report
from .store.repository import StepRepository
from .store.storage import JsonFileStorage

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="callwalk",
        description="Guide operators through branching call scripts",
    )
    parser.add_argument("--data-dir", default=None, help="Directory holding the script store")
    parser.add_argument("--log-level", default=None, help="Logging level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import a JSON script bundle")
    import_parser.add_argument("bundle", help="Path to the bundle (.json)")

    export_parser = subparsers.add_parser("export", help="Export a product")
    export_parser.add_argument("product", nargs="?", help="Product id or name (default: all, json only)")
    export_parser.add_argument(
        "--format",
        choices=("json", "csv"),
        default="json",
        help="json bundle or csv report",
    )
    export_parser.add_argument("--output", "-o", default=None, help="Write to a file instead of stdout")

    subparsers.add_parser("products", help="List products")

    steps_parser = subparsers.add_parser("steps", help="List the steps of a product")
    steps_parser.add_argument("product", help="Product id or name")
    steps_parser.add_argument("--search", default=None, help="Only steps whose title matches")

    check_parser = subparsers.add_parser("check", help="Report dangling and unreachable steps")
    check_parser.add_argument("product", nargs="?", help="Product id or name (default: all)")

    walk_parser = subparsers.add_parser("walk", help="Run the operator console")
    walk_parser.add_argument("product", help="Product id or name")
    walk_parser.add_argument("--operator", default=None, help="Operator name for placeholders")
    walk_parser.add_argument("--customer", default=None, help="Customer first name for placeholders")
    walk_parser.add_argument("--text-size", type=int, default=None, help="Text size percent (50-120)")
    walk_parser.add_argument(
        "--history-limit",
        type=int,
        default=None,
        help="Keep only the last N screens in the back history",
    )
    return parser


def main(argv: Optional[list] = None, console: Optional[Console] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = console or Console()

    settings = load_settings()
    if args.data_dir:
        settings.data_dir = Path(args.data_dir)
    if args.log_level:
        settings.log_level = args.log_level
    setup_logging(settings.log_level)

    repository = open_repository(settings)
    try:
        handler = COMMANDS[args.command]
        return handler(repository, args, settings, console)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 1
    except Exception as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"\nError: {exc}")
        return 1
    finally:
        repository.close()


def open_repository(settings: Settings) -> StepRepository:
    return StepRepository(
        JsonFileStorage(settings.data_dir),
        save_delay=settings.save_debounce,
        notify_delay=settings.notify_debounce,
    )


def _require_product(repository: StepRepository, key: str) -> Product:
    product = repository.find_product(key)
    if product is None:
        raise ProductNotFoundError(key)
    return product


# ===== Commands =====


def cmd_import(repository: StepRepository, args, settings: Settings, console: Console) -> int:
    path = Path(args.bundle)
    try:
        bundle = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise BundleValidationError(f"{path} is not valid JSON: {exc}") from exc
    result = repository.import_from_json(bundle)
    repository.flush()

    console.print(
        f"Imported {result.product_count} product(s), {result.step_count} step(s)",
        style="bold green" if result.product_count else "bold red",
    )
    if result.issues:
        console.print(f"{len(result.issues)} item(s) skipped:", style="yellow")
        for issue in result.issues:
            console.print(f"  - {issue.describe()}", markup=False)
    return 0 if result.product_count else 1


def cmd_export(repository: StepRepository, args, settings: Settings, console: Console) -> int:
    if args.format == "csv":
        if not args.product:
            raise ValueError("csv export needs a product")
        payload = export_csv_report(repository, _require_product(repository, args.product).id)
    else:
        product_ids = None
        if args.product:
            product_ids = [_require_product(repository, args.product).id]
        payload = json.dumps(export_bundle(repository, product_ids), ensure_ascii=False, indent=2)

    if args.output:
        # newline="" keeps the csv module's CRLF row endings intact.
        with open(args.output, "w", encoding="utf-8", newline="") as handle:
            handle.write(payload)
        console.print(f"Wrote {args.output}")
    else:
        console.print(payload, markup=False, highlight=False, soft_wrap=True)
    return 0


def cmd_products(repository: StepRepository, args, settings: Settings, console: Console) -> int:
    products = repository.get_products()
    if not products:
        console.print("No products. Import a bundle first.", style="dim")
        return 0
    table = Table(title="Products")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Category")
    table.add_column("Steps", justify="right")
    table.add_column("First step")
    for product in products:
        table.add_row(
            product.id,
            product.name,
            product.category,
            str(len(repository.get_steps(product.id))),
            product.script_id or "-",
        )
    console.print(table)
    return 0


def cmd_steps(repository: StepRepository, args, settings: Settings, console: Console) -> int:
    product = _require_product(repository, args.product)
    if args.search:
        steps = repository.search_steps(product.id, args.search)
    else:
        steps = sorted(repository.get_steps(product.id), key=lambda step: step.order)
    table = Table(title=product.name)
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Buttons")
    for step in steps:
        targets = ", ".join(
            f"{button.label} -> {button.next_step_id or 'end'}" for button in step.sorted_buttons()
        )
        table.add_row(str(step.order), Text(step.id), Text(step.title), Text(targets))
    console.print(table)
    return 0


def cmd_check(repository: StepRepository, args, settings: Settings, console: Console) -> int:
    if args.product:
        products = [_require_product(repository, args.product)]
    else:
        products = repository.get_products()
    failed = False
    for product in products:
        report = check_graph(product.id, product.script_id, repository.get_steps(product.id))
        if report.ok:
            console.print(f"{product.name}: {report.step_count} step(s), no issues", style="green")
            continue
        failed = True
        console.print(f"{product.name}: {len(report.issues)} issue(s)", style="bold red")
        for issue in report.issues:
            console.print(f"  [{issue.kind}] {issue.step_id}: {issue.description}", markup=False)
    return 1 if failed else 0


def cmd_walk(repository: StepRepository, args, settings: Settings, console: Console) -> int:
    from .console import run_console

    product = _require_product(repository, args.product)
    placeholders = Placeholders(
        operator_name=args.operator or settings.operator_name,
        customer_first_name=args.customer or DEFAULT_CUSTOMER_NAME,
    )
    run_console(
        repository,
        product,
        placeholders=placeholders,
        console=console,
        text_size=args.text_size if args.text_size is not None else settings.text_size,
        history_limit=args.history_limit or settings.history_limit,
    )
    return 0


COMMANDS = {
    "import": cmd_import,
    "export": cmd_export,
    "products": cmd_products,
    "steps": cmd_steps,
    "check": cmd_check,
    "walk": cmd_walk,
}


if __name__ == "__main__":
    raise SystemExit(main())
