"""Loading transaction CSV files and applying them in order."""

from __future__ import annotations

import csv
import os
import re
from typing import Any, Callable, Mapping

from .client import ApiError, Client
from .organisations import (
    OperationError,
    _field,
    add_org_entity,
    merge_ministers,
    move_department,
    rename_minister,
    terminate_org_entity,
)
from .people import add_person_entity, move_person, terminate_person_entity

ORGANISATION_PROCESS = "organisation"
PERSON_PROCESS = "person"

_FILE_TYPES = ("TERMINATE", "MOVE", "MERGE", "RENAME")
_INTEGER = re.compile(r"[+-]?\d+")


def file_type_for(file_name: str) -> str:
    """Return the transaction type named in a CSV file name, defaulting to ADD."""
    stem = file_name.removesuffix(".csv")
    return next((kind for kind in _FILE_TYPES if kind in stem), "ADD")


def _as_int(text: str) -> int:
    return int(text) if _INTEGER.fullmatch(text) else 0


def transaction_sort_key(transaction: Mapping[str, Any]) -> tuple[str, str, int]:
    """Order transactions by gazette, marker and then numeric sequence."""
    transaction_id = transaction.get("transaction_id")
    if not isinstance(transaction_id, str):
        raise OperationError("transaction is missing transaction_id")
    parts = transaction_id.split("_")
    if len(parts) < 3:
        raise OperationError(f"malformed transaction id: {transaction_id}")
    return parts[0], parts[1], _as_int(parts[2].removeprefix("tr_"))


def load_transactions(file_path: str | os.PathLike[str], file_type: str) -> list[dict[str, Any]]:
    """Read a CSV file of transactions, tagging each with its file type."""
    try:
        with open(file_path, newline="", encoding="utf-8") as handle:
            rows = [row for row in csv.reader(handle) if row]
    except OSError as exc:
        raise OperationError(f"failed to open file {file_path}: {exc}") from exc
    except csv.Error as exc:
        raise OperationError(f"failed to read records from {file_path}: {exc}") from exc

    if not rows:
        raise OperationError(f"failed to read header from {file_path}: empty file")
    header, *records = rows

    transactions = []
    for line, record in enumerate(records, start=2):
        if len(record) != len(header):
            raise OperationError(
                f"failed to read records from {file_path}: "
                f"record on line {line}: wrong number of fields"
            )
        transaction: dict[str, Any] = dict(zip(header, record))
        transaction["file_type"] = file_type
        transactions.append(transaction)
    return transactions


def _initial_counters(process_type: str) -> dict[str, int]:
    if process_type == ORGANISATION_PROCESS:
        return {"minister": 0, "department": 0}
    if process_type == PERSON_PROCESS:
        return {"citizen": 0}
    raise ValueError(f"invalid process type: {process_type}")


def _collect(data_dir: str | os.PathLike[str]) -> list[dict[str, Any]]:
    try:
        entries = sorted(os.scandir(data_dir), key=lambda entry: entry.name)
    except OSError as exc:
        raise OperationError(f"failed to read directory {data_dir}: {exc}") from exc

    transactions: list[dict[str, Any]] = []
    for entry in entries:
        if entry.is_dir() or not entry.name.endswith(".csv"):
            continue
        try:
            transactions.extend(load_transactions(entry.path, file_type_for(entry.name)))
        except OperationError as exc:
            raise OperationError(
                f"failed to load transactions from {entry.name}: {exc}"
            ) from exc
    return transactions


def _run(label: str, transaction: Mapping[str, Any], action: Callable[[], Any]) -> Any:
    transaction_id = transaction.get("transaction_id")
    try:
        result = action()
    except (ApiError, OperationError) as exc:
        raise OperationError(
            f"failed to process {label.lower()} transaction {transaction_id}: {exc}"
        ) from exc
    print(f"Processed {label} transaction: {transaction_id}")
    return result


def _apply(
    client: Client,
    transaction: dict[str, Any],
    process_type: str,
    entity_counters: dict[str, int],
) -> None:
    transaction_id = transaction.get("transaction_id")
    file_type = transaction.get("file_type")
    organisation = process_type == ORGANISATION_PROCESS

    if file_type == "ADD":
        child_type = _field(transaction, "child_type")
        if organisation and child_type in ("minister", "department"):
            entity_counters[child_type] = _run(
                "Add", transaction, lambda: add_org_entity(client, transaction, entity_counters)
            )
        elif not organisation and child_type == "citizen":
            entity_counters[child_type] = _run(
                "Add",
                transaction,
                lambda: add_person_entity(client, transaction, entity_counters),
            )
        else:
            print(
                f"Skipping transaction {transaction_id}: type {child_type} "
                f"does not match process type {process_type}"
            )
    elif file_type == "TERMINATE":
        terminate = terminate_org_entity if organisation else terminate_person_entity
        _run("Terminate", transaction, lambda: terminate(client, transaction))
    elif file_type == "MOVE":
        move = move_department if organisation else move_person
        _run("Move", transaction, lambda: move(client, transaction))
    elif file_type == "MERGE":
        if organisation:
            entity_counters["minister"] = _run(
                "Merge", transaction, lambda: merge_ministers(client, transaction, entity_counters)
            )
    elif file_type == "RENAME":
        if organisation:
            entity_counters["minister"] = _run(
                "Rename",
                transaction,
                lambda: rename_minister(client, transaction, entity_counters),
            )
    else:
        print(f"Skipping unknown transaction type: {file_type}")


def process_transactions(
    client: Client, data_dir: str | os.PathLike[str], process_type: str
) -> None:
    """Apply every transaction from the CSV files in a directory, in ID order."""
    entity_counters = _initial_counters(process_type)
    transactions = _collect(data_dir)
    transactions.sort(key=transaction_sort_key)

    for transaction in transactions:
        print(
            f"Processing transaction: {transaction.get('transaction_id')} "
            f"(Type: {transaction.get('file_type')})"
        )
        _apply(client, transaction, process_type, entity_counters)