from __future__ import annotations

import argparse
import json
import logging
import sys

from upc_resolver.sources.common import configure_debug
from upc_resolver.tools import get_lookup_usage, lookup_product_by_upc, reset_lookup_budgets, search_product_by_name
from upc_resolver.tracing import configure_tracing


def _print_resolution(result: dict) -> None:
    if result.get("status") == "invalid_input":
        print(f"Invalid input: {result.get('error')}")
        return
    product = result.get("product") or {}
    if result.get("found"):
        print(f"Source: {result['source']}")
        print(f"Title: {product.get('title') or '(untitled)'}")
        if product.get("brand"):
            print(f"Brand: {product['brand']}")
        code = result.get("upc") or product.get("upc") or product.get("ean") or product.get("gtin")
        if code:
            print(f"Code: {code}")
        if product.get("lowest_price") is not None:
            print(f"Price range: {product['lowest_price']} - {product.get('highest_price')} {product.get('currency')}")
    else:
        print(f"No product found (status={result.get('status')})")
    for attempt in result.get("attempts", []):
        print(f"  {attempt['source']}: {attempt['status']}")
    for name, budget in (result.get("usage") or {}).items():
        print(f"  {name} {budget['kind']}: {budget['remaining']}/{budget['limit']} remaining")


def _print_usage(report: dict) -> None:
    for service in report["services"].values():
        state = "configured" if service["configured"] else "not configured"
        print(f"{service['name']} ({state})")
        for kind in ("lookup", "search"):
            if kind in service:
                b = service[kind]
                print(f"  {kind}: {b['used']}/{b['limit']} used, {b['remaining']} remaining")
    print(f"Best search option: {report['summary']['best_option']}")


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve products by UPC or name across lookup services")
    parser.add_argument("--json", action="store_true", help="Print output as JSON")
    parser.add_argument("--verbose", action="store_true", help="Log source calls and budget changes")
    parser.add_argument("--debug-sources", action="store_true", help="Write raw vendor responses to the debug directory")
    parser.add_argument("--debug-dir", default="debug/sources", help="Debug snapshot directory for --debug-sources")

    sub = parser.add_subparsers(dest="command", required=True)
    lookup = sub.add_parser("lookup", help="Look up a product by UPC/EAN/GTIN")
    lookup.add_argument("upc")
    search = sub.add_parser("search", help="Search for a product (and its UPC) by name")
    search.add_argument("name")
    search.add_argument("--brand", default="")
    sub.add_parser("usage", help="Show remaining daily capacity per source")
    reset = sub.add_parser("reset-budgets", help="Reset daily budgets")
    reset.add_argument("--source", default=None)
    reset.add_argument("--kind", choices=("lookup", "search"), default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    args = _build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    configure_tracing()
    configure_debug(args.debug_sources, args.debug_dir)

    if args.command in ("usage", "reset-budgets"):
        try:
            report = reset_lookup_budgets(args.source, args.kind) if args.command == "reset-budgets" else get_lookup_usage()
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        if args.json:
            print(json.dumps(report, indent=2))
        else:
            _print_usage(report)
        return 0

    if args.command == "lookup":
        result = lookup_product_by_upc(args.upc)
    else:
        result = search_product_by_name(args.name, args.brand)

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        _print_resolution(result)
    if result.get("status") == "invalid_input":
        return 2
    return 0 if result.get("found") else 1


if __name__ == "__main__":
    sys.exit(main())
