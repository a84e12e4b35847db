#!/usr/bin/env python3
"""
Inspect the generate_form payload carried by a saved assistant message.

PURPOSE: Check what the form engine makes of a payload before it reaches
the UI: which fields survive normalization, which are quarantined, where
dependsOn drifts from the visibility conditions and how the visible fields
page out with the initial data.

USAGE:
    python scripts/check_form_payload.py message.txt
    python scripts/check_form_payload.py message.txt --page-size 3 --json

OUTPUT:
    - Form title, topic and field count
    - Per field: id, type, required, visibility under the initial data,
      quarantine reason
    - Dependency drift issues
    - Step layout of the visible fields
"""

import argparse
import json
import sys
from pathlib import Path

from src.core.exceptions import FormPayloadError
from src.domain.models.form_schema import FormSchema
from src.services.form_engine import (
    FormPagination,
    build_initial_form_data,
    check_dependency_consistency,
    is_field_visible,
)
from src.services.form_payload_parser import parse_form_from_message


def print_report(schema: FormSchema, page_size: int | None) -> None:
    form_data = build_initial_form_data(schema)
    pagination = FormPagination.build(schema, form_data, page_size)

    print("=" * 72)
    print(f"FORM: {schema.title}")
    print(f"Topic: {schema.research_topic or '-'}")
    print(f"Fields: {len(schema.fields)}")
    print("=" * 72)
    print()

    for field in schema.fields:
        visible = "visible" if is_field_visible(field, form_data) else "hidden"
        required = "required" if field.required else "optional"
        print(f"  {field.id:<28} {field.type.value:<12} {required:<9} {visible}")
        if field.schema_error:
            print(f"      QUARANTINED: {field.schema_error}")

    issues = check_dependency_consistency(schema.fields)
    print()
    print(f"Dependency issues: {len(issues)}")
    for issue in issues:
        print(f"  - {issue}")

    print()
    print(f"Steps ({pagination.page_size} fields per step): {pagination.page_count}")
    for index, step in enumerate(pagination.steps):
        print(f"  {index + 1}: {', '.join(f.id for f in step) or '(empty)'}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Parse an assistant message and report on its form payload"
    )
    parser.add_argument("message_file", help="File holding the assistant message text")
    parser.add_argument(
        "--page-size",
        type=int,
        default=None,
        help="Fields per step (default: workflow config)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the normalized schema as JSON instead of a report",
    )
    args = parser.parse_args()

    path = Path(args.message_file)
    if not path.exists():
        print(f"Error: File not found at {path}", file=sys.stderr)
        return 1

    try:
        schema = parse_form_from_message(path.read_text())
    except FormPayloadError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if schema is None:
        print("Error: No generate_form payload found", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(schema.model_dump(mode="json", by_alias=True), indent=2))
    else:
        print_report(schema, args.page_size)
    return 0


if __name__ == "__main__":
    sys.exit(main())
