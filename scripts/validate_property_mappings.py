#!/usr/bin/env python3
"""
Validate the dealership property mapping file.

Checks for duplicate dealership IDs, GA4 properties accidentally shared by
several dealerships, access flags without a property ID, and malformed
Search Console URLs. Exits 1 when any problem is found.

Runs inside the service environment (DATABASE_URL and SEOWORKS_WEBHOOK_SECRET
must be set, as for the API).

Usage:
    # Validate the bundled (or PROPERTY_MAPPINGS_PATH) file
    python3 scripts/validate_property_mappings.py

    # Validate a candidate file before deploying it
    python3 scripts/validate_property_mappings.py --path /tmp/mappings.json

    # Print every mapping as well
    python3 scripts/validate_property_mappings.py --verbose
"""

import argparse
import sys
from pathlib import Path

from app.config import settings
from app.exceptions import PropertyMappingError
from app.services.property_mapping import DEFAULT_MAPPINGS_PATH, PropertyMappingRegistry


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate dealership property mappings")
    parser.add_argument(
        "--path",
        type=Path,
        default=None,
        help="Mapping file (default: PROPERTY_MAPPINGS_PATH or the bundled file)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="List every mapping")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    path = args.path or Path(settings.property_mappings_path or DEFAULT_MAPPINGS_PATH)

    try:
        registry = PropertyMappingRegistry.from_file(path)
    except PropertyMappingError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if args.verbose:
        for mapping in registry:
            access = "ga4" if mapping.has_ga4_access else "-"
            print(
                f"{mapping.dealership_id:40} {access:4} "
                f"{mapping.ga4_property_id or '':12} {mapping.search_console_url or ''}"
            )

    problems = registry.validate()
    print(
        f"{path}: {len(registry)} dealerships, "
        f"{len(registry.dealerships_with_ga4_access())} with GA4 access"
    )
    if problems:
        for problem in problems:
            print(f"  ✗ {problem}", file=sys.stderr)
        return 1

    print("  ✓ no problems found")
    return 0


if __name__ == "__main__":
    sys.exit(main())
