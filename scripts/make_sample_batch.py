#!/usr/bin/env python
from __future__ import annotations

import argparse
from pathlib import Path

from openpyxl import Workbook

HEADER = [
    "Client Account Name",
    "Client Reference",
    "Client Default Correspondence Email",
    "User Email",
    "Sales Order Link",
    "Sales Order Correspondence Address",
    "Application Number",
    "Patent Number",
    "Filing Date",
    "Applicant Names",
]


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a sample patent batch workbook")
    parser.add_argument("--output", required=True, help="output path (.xlsx)")
    parser.add_argument("--client", default="Acme Corp", help="client account name")
    parser.add_argument(
        "--patent",
        action="append",
        dest="patents",
        help="EP publication number, may be repeated",
    )
    args = parser.parse_args()

    patents = args.patents or ["EP1234567", "EP2345678"]

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Patents"
    sheet.append(HEADER)
    for number, patent in enumerate(patents, start=1):
        sheet.append([
            args.client,
            f"REF-{number:03d}",
            "ip@example.com",
            "paralegal@example.com",
            f"https://crm.example.com/orders/{number}",
            f"{args.client}\nMain Street 1\n8000 Zurich\nip@example.com",
            f"EP{10000000 + number}",
            patent,
            "2015-03-01",
            args.client,
        ])

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(output)
    print(f"sample batch written: {output}")


if __name__ == "__main__":
    main()
