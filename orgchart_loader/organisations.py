"""Organisation-chart operations on the government, ministers and departments."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from .client import ApiError, Client
from .models import (
    Entity,
    Kind,
    Relationship,
    RelationshipEntry,
    SearchCriteria,
    TimeBasedValue,
    to_iso_date,
)

GOVERNMENT_ID = "gov_01"
GOVERNMENT_NAME = "Government of Sri Lanka"
GOVERNMENT_CREATED = "2024-01-01T00:00:00Z"
ORGANISATION = "Organisation"
AS_MINISTER = "AS_MINISTER"
AS_DEPARTMENT = "AS_DEPARTMENT"
RENAMED_TO = "RENAMED_TO"
MERGED_INTO = "MERGED_INTO"


class OperationError(Exception):
    """An organisation-chart operation could not be carried out."""


@contextmanager
def _step(action: str) -> Iterator[None]:
    try:
        yield
    except (ApiError, OperationError) as exc:
        raise OperationError(f"failed to {action}: {exc}") from exc


def _field(transaction: Mapping[str, Any], key: str) -> str:
    try:
        value = transaction[key]
    except KeyError:
        raise OperationError(f"missing transaction field: {key}") from None
    if not isinstance(value, str):
        raise OperationError(f"transaction field {key} must be a string")
    return value


def _iso_date(date_str: str) -> str:
    try:
        return to_iso_date(date_str)
    except ValueError as exc:
        raise OperationError(str(exc)) from exc


def _org(minor: str, name: str) -> SearchCriteria:
    return SearchCriteria(kind=Kind(major=ORGANISATION, minor=minor), name=name)


def _first_id(client: Client, criteria: SearchCriteria, action: str, missing: str) -> str:
    with _step(action):
        results = client.search_entities(criteria)
    if not results:
        raise OperationError(missing)
    return results[0].id


def _link(owner_id: str, target_id: str, name: str, start_time: str) -> Entity:
    """An update that adds a relationship from owner to target."""
    rel_id = f"{owner_id}_{target_id}"
    return Entity(
        id=owner_id,
        relationships=[
            RelationshipEntry(
                key=rel_id,
                value=Relationship(
                    related_entity_id=target_id,
                    start_time=start_time,
                    end_time="",
                    id=rel_id,
                    name=name,
                ),
            )
        ],
    )


def _next_entity_id(
    transaction_id: str, child_type: str, entity_counters: Mapping[str, int]
) -> tuple[str, int]:
    if child_type not in entity_counters:
        raise OperationError(f"unknown child type: {child_type}")
    prefix = f"{transaction_id[:7]}_{child_type[:3].lower()}"
    counter = entity_counters[child_type] + 1
    return f"{prefix}_{counter}", counter


def _active_departments(relations: list[Relationship]) -> list[Relationship]:
    return [rel for rel in relations if rel.name == AS_DEPARTMENT and not rel.end_time]


def _close_relationship(
    client: Client, parent_id: str, child_id: str, rel_type: str, date_iso: str
) -> None:
    """Set the end time of the active relationship from parent to child."""
    with _step("get relationship"):
        relations = client.get_related_entities(
            parent_id,
            Relationship(related_entity_id=child_id, name=rel_type, start_time=date_iso),
        )
    active = next(
        (rel for rel in relations if rel.related_entity_id == child_id and not rel.end_time),
        None,
    )
    if active is None:
        raise OperationError(
            f"no active relationship found between {parent_id} and {child_id} "
            f"with type {rel_type}"
        )
    closing = Entity(
        id=parent_id,
        relationships=[
            RelationshipEntry(
                key=active.id, value=Relationship(end_time=date_iso, id=active.id)
            )
        ],
    )
    with _step("terminate relationship"):
        client.update_entity(parent_id, closing)


def create_government_node(client: Client) -> Entity:
    """Create the root government entity."""
    government = Entity(
        id=GOVERNMENT_ID,
        created=GOVERNMENT_CREATED,
        kind=Kind(major=ORGANISATION, minor="government"),
        name=TimeBasedValue(start_time=GOVERNMENT_CREATED, value=GOVERNMENT_NAME),
    )
    with _step("create government entity"):
        return client.create_entity(government)


def add_org_entity(
    client: Client, transaction: Mapping[str, Any], entity_counters: Mapping[str, int]
) -> int:
    """Create an organisation entity under an existing parent; return its counter."""
    parent = _field(transaction, "parent")
    child = _field(transaction, "child")
    date_str = _field(transaction, "date")
    parent_type = _field(transaction, "parent_type")
    child_type = _field(transaction, "child_type")
    rel_type = _field(transaction, "rel_type")
    transaction_id = _field(transaction, "transaction_id")

    date_iso = _iso_date(date_str)
    entity_id, counter = _next_entity_id(transaction_id, child_type, entity_counters)

    parent_id = _first_id(
        client,
        _org(parent_type, parent),
        "search for parent entity",
        f"parent entity not found: {parent}",
    )

    child_entity = Entity(
        id=entity_id,
        kind=Kind(major=ORGANISATION, minor=child_type),
        created=date_iso,
        name=TimeBasedValue(start_time=date_iso, value=child),
    )
    with _step("create child entity"):
        created = client.create_entity(child_entity)

    with _step("update parent entity"):
        client.update_entity(parent_id, _link(parent_id, created.id, rel_type, date_iso))

    return counter


def terminate_org_entity(client: Client, transaction: Mapping[str, Any]) -> None:
    """End the active relationship between a parent and a child organisation."""
    parent = _field(transaction, "parent")
    child = _field(transaction, "child")
    date_str = _field(transaction, "date")
    parent_type = _field(transaction, "parent_type")
    child_type = _field(transaction, "child_type")
    rel_type = _field(transaction, "rel_type")

    date_iso = _iso_date(date_str)

    parent_id = _first_id(
        client,
        _org(parent_type, parent),
        "search for parent entity",
        f"parent entity not found: {parent}",
    )
    child_id = _first_id(
        client,
        _org(child_type, child),
        "search for child entity",
        f"child entity not found: {child}",
    )

    if child_type == "minister":
        with _step("get minister's relationships"):
            relations = client.get_all_related_entities(child_id)
        if _active_departments(relations):
            raise OperationError("cannot terminate minister with active departments")

    _close_relationship(client, parent_id, child_id, rel_type, date_iso)


def move_department(client: Client, transaction: Mapping[str, Any]) -> None:
    """Move a department from one minister to another."""
    new_parent = _field(transaction, "new_parent")
    old_parent = _field(transaction, "old_parent")
    child = _field(transaction, "child")
    date_str = _field(transaction, "date")

    date_iso = _iso_date(date_str)

    new_parent_id = _first_id(
        client,
        _org("minister", new_parent),
        "search for new parent entity",
        f"new parent entity not found: {new_parent}",
    )
    child_id = _first_id(
        client,
        _org("department", child),
        "search for child entity",
        f"child entity not found: {child}",
    )

    with _step("create new relationship"):
        client.update_entity(
            new_parent_id, _link(new_parent_id, child_id, AS_DEPARTMENT, date_iso)
        )

    with _step("terminate old relationship"):
        terminate_org_entity(
            client,
            {
                "parent": old_parent,
                "child": child,
                "date": date_str,
                "parent_type": "minister",
                "child_type": "department",
                "rel_type": AS_DEPARTMENT,
            },
        )


def _department_name(client: Client, department_id: str) -> str:
    with _step("search for department"):
        results = client.search_entities(SearchCriteria(id=department_id))
    if not results:
        raise OperationError(f"failed to find department with ID: {department_id}")
    return results[0].name


def _add_minister(
    client: Client,
    name: str,
    date_str: str,
    rel_type: str,
    transaction_id: str,
    entity_counters: Mapping[str, int],
) -> tuple[int, str]:
    """Create a minister under the government and return its counter and ID."""
    with _step("create new minister"):
        counter = add_org_entity(
            client,
            {
                "parent": GOVERNMENT_NAME,
                "child": name,
                "date": date_str,
                "parent_type": "government",
                "child_type": "minister",
                "rel_type": rel_type,
                "transaction_id": transaction_id,
            },
            entity_counters,
        )
    minister_id = _first_id(
        client,
        _org("minister", name),
        "search for new minister",
        f"new minister not found: {name}",
    )
    return counter, minister_id


def _terminate_minister(client: Client, name: str, date_str: str, rel_type: str) -> None:
    with _step("terminate old minister's government relationship"):
        terminate_org_entity(
            client,
            {
                "parent": GOVERNMENT_NAME,
                "child": name,
                "date": date_str,
                "parent_type": "government",
                "child_type": "minister",
                "rel_type": rel_type,
            },
        )


def rename_minister(
    client: Client, transaction: Mapping[str, Any], entity_counters: Mapping[str, int]
) -> int:
    """Replace a minister by a newly named one, carrying over its departments."""
    old_name = _field(transaction, "old")
    new_name = _field(transaction, "new")
    date_str = _field(transaction, "date")
    rel_type = _field(transaction, "type")
    transaction_id = _field(transaction, "transaction_id")

    date_iso = _iso_date(date_str)

    old_id = _first_id(
        client,
        _org("minister", old_name),
        "search for old minister",
        f"old minister not found: {old_name}",
    )

    counter, new_id = _add_minister(
        client, new_name, date_str, rel_type, transaction_id, entity_counters
    )

    with _step("get old minister's relationships"):
        old_relations = client.get_all_related_entities(old_id)

    for rel in _active_departments(old_relations):
        department = _department_name(client, rel.related_entity_id)
        with _step("create new department relationship"):
            client.update_entity(
                new_id, _link(new_id, rel.related_entity_id, AS_DEPARTMENT, date_iso)
            )
        with _step("terminate old department relationship"):
            terminate_org_entity(
                client,
                {
                    "parent": old_name,
                    "child": department,
                    "date": date_str,
                    "parent_type": "minister",
                    "child_type": "department",
                    "rel_type": AS_DEPARTMENT,
                },
            )

    _terminate_minister(client, old_name, date_str, rel_type)

    with _step("create RENAMED_TO relationship"):
        client.update_entity(old_id, _link(old_id, new_id, RENAMED_TO, date_iso))

    return counter


def merge_ministers(
    client: Client, transaction: Mapping[str, Any], entity_counters: Mapping[str, int]
) -> int:
    """Merge several ministers into a new one, moving all their departments."""
    old_ministers_str = _field(transaction, "old")
    new_minister = _field(transaction, "new")
    date_str = _field(transaction, "date")
    transaction_id = _field(transaction, "transaction_id")

    date_iso = _iso_date(date_str)

    old_ministers = [name.strip() for name in old_ministers_str.strip("[]").split(",")]

    counter, new_id = _add_minister(
        client, new_minister, date_str, AS_MINISTER, transaction_id, entity_counters
    )

    for old_minister in old_ministers:
        old_id = _first_id(
            client,
            _org("minister", old_minister),
            "search for old minister",
            f"old minister not found: {old_minister}",
        )

        with _step("get old minister's relationships"):
            old_relations = client.get_all_related_entities(old_id)

        for rel in _active_departments(old_relations):
            department = _department_name(client, rel.related_entity_id)
            with _step("move department"):
                move_department(
                    client,
                    {
                        "old_parent": old_minister,
                        "new_parent": new_minister,
                        "child": department,
                        "type": AS_DEPARTMENT,
                        "date": date_str,
                    },
                )

        _terminate_minister(client, old_minister, date_str, AS_MINISTER)

        with _step("create MERGED_INTO relationship"):
            client.update_entity(old_id, _link(old_id, new_id, MERGED_INTO, date_iso))

    return counter