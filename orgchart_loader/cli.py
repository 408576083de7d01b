"""Command line entry point that loads organisation chart transactions."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Optional, Sequence

from .client import ApiError, Client
from .organisations import OperationError, create_government_node
from .transactions import ORGANISATION_PROCESS, PERSON_PROCESS, process_transactions

DEFAULT_UPDATE_ENDPOINT = "http://localhost:8080/entities"
DEFAULT_QUERY_ENDPOINT = "http://localhost:8081/v1/entities"

_EXAMPLES = """\
Examples:
  1. Process organisation data with default settings:
     %(prog)s -data /path/to/data/directory

  2. Process person data:
     %(prog)s -data /path/to/data/directory -type person

  3. Initialize database and process organisation data:
     %(prog)s -data /path/to/data/directory -init

  4. Use custom API endpoints:
     %(prog)s -data /path/to/data/directory -update_endpoint http://custom:8080/entities \
-query_endpoint http://custom:8081/v1/entities
"""


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the loader command."""
    parser = argparse.ArgumentParser(
        prog="orgchart-loader",
        description="Process organisation chart transactions from a specified data directory.",
        epilog=_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-data", "--data", dest="data", default="",
        help="Path to the data directory containing transactions (required)",
    )
    parser.add_argument(
        "-init", "--init", dest="init", action="store_true",
        help="Initialize the database with government node before processing transactions",
    )
    parser.add_argument(
        "-update_endpoint", "--update_endpoint", dest="update_endpoint",
        default=DEFAULT_UPDATE_ENDPOINT,
        help=f"Endpoint for the Update API (default: {DEFAULT_UPDATE_ENDPOINT})",
    )
    parser.add_argument(
        "-query_endpoint", "--query_endpoint", dest="query_endpoint",
        default=DEFAULT_QUERY_ENDPOINT,
        help=f"Endpoint for the Query API (default: {DEFAULT_QUERY_ENDPOINT})",
    )
    parser.add_argument(
        "-type", "--type", dest="type", default=ORGANISATION_PROCESS,
        help="Type of data to process: 'organisation' or 'person' (default: organisation)",
    )
    return parser


def _usage_error(parser: argparse.ArgumentParser, message: str) -> int:
    print(f"Error: {message}\n", file=sys.stderr)
    parser.print_help(sys.stderr)
    return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the loader; return the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.data:
        return _usage_error(parser, "Data directory path is required")
    if args.type not in (ORGANISATION_PROCESS, PERSON_PROCESS):
        return _usage_error(parser, "Invalid process type. Must be 'organisation' or 'person'")
    if not os.path.exists(args.data):
        print(f"Data directory does not exist: {args.data}", file=sys.stderr)
        return 1

    data_dir = os.path.abspath(args.data)
    client = Client(args.update_endpoint, args.query_endpoint)

    if args.init:
        print("Initializing database with government node...")
        try:
            government = create_government_node(client)
        except (ApiError, OperationError) as exc:
            print(f"Failed to create government node: {exc}", file=sys.stderr)
            return 1
        print(f"Successfully created government node with ID: {government.id}")

    print(f"Processing {args.type} transactions from directory: {data_dir}")
    try:
        process_transactions(client, data_dir, args.type)
    except (ApiError, OperationError, ValueError, OSError) as exc:
        print(f"Failed to process transactions: {exc}", file=sys.stderr)
        return 1

    print("Successfully processed all transactions")
    return 0


if __name__ == "__main__":
    sys.exit(main())