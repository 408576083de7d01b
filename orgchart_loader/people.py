"""Operations that appoint people to organisations and move them between them."""

from __future__ import annotations

from typing import Any, Mapping

from .client import Client
from .models import Entity, Kind, SearchCriteria, TimeBasedValue
from .organisations import (
    ORGANISATION,
    OperationError,
    _close_relationship,
    _field,
    _first_id,
    _iso_date,
    _link,
    _next_entity_id,
    _org,
    _step,
)

PERSON = "Person"
CITIZEN = "citizen"


def _person(minor: str, name: str) -> SearchCriteria:
    return SearchCriteria(kind=Kind(major=PERSON, minor=minor), name=name)


def add_person_entity(
    client: Client, transaction: Mapping[str, Any], entity_counters: Mapping[str, int]
) -> int:
    """Link a person to an existing parent, creating the person if not yet known.

    Returns the counter used for a newly created person, or the current
    counter of the child type when an existing person was reused.
    """
    parent = _field(transaction, "parent")
    child = _field(transaction, "child")
    date_str = _field(transaction, "date")
    parent_type = _field(transaction, "parent_type")
    child_type = _field(transaction, "child_type")
    rel_type = _field(transaction, "rel_type")
    transaction_id = _field(transaction, "transaction_id")

    date_iso = _iso_date(date_str)

    parent_id = _first_id(
        client,
        SearchCriteria(kind=Kind(major=ORGANISATION, minor=parent_type), name=parent),
        "search for parent entity",
        f"parent entity not found: {parent}",
    )

    with _step("search for person entity"):
        people = client.search_entities(_person("", child))
    if len(people) > 1:
        raise OperationError(f"multiple entities found for person: {child}")

    if people:
        child_id = people[0].id
        counter = entity_counters.get(child_type, 0)
    else:
        entity_id, counter = _next_entity_id(transaction_id, child_type, entity_counters)
        person = Entity(
            id=entity_id,
            kind=Kind(major=PERSON, minor=child_type),
            created=date_iso,
            name=TimeBasedValue(start_time=date_iso, value=child),
        )
        with _step("create child entity"):
            child_id = client.create_entity(person).id

    with _step("update parent entity"):
        client.update_entity(parent_id, _link(parent_id, child_id, rel_type, date_iso))

    return counter


def terminate_person_entity(client: Client, transaction: Mapping[str, Any]) -> None:
    """End the active relationship between an organisation and a person."""
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
        _person(child_type, child),
        "search for child entity",
        f"child entity not found: {child}",
    )

    _close_relationship(client, parent_id, child_id, rel_type, date_iso)


def move_person(client: Client, transaction: Mapping[str, Any]) -> None:
    """Move a citizen from one minister to another."""
    new_parent = _field(transaction, "new_parent")
    old_parent = _field(transaction, "old_parent")
    child = _field(transaction, "child")
    date_str = _field(transaction, "date")
    rel_type = _field(transaction, "type")

    date_iso = _iso_date(date_str)

    new_parent_id = _first_id(
        client,
        _org("minister", new_parent),
        "search for new parent entity",
        f"new parent entity not found: {new_parent}",
    )
    child_id = _first_id(
        client,
        _person(CITIZEN, child),
        "search for child entity",
        f"child entity not found: {child}",
    )

    with _step("create new relationship"):
        client.update_entity(new_parent_id, _link(new_parent_id, child_id, rel_type, date_iso))

    with _step("terminate old relationship"):
        terminate_person_entity(
            client,
            {
                "parent": old_parent,
                "child": child,
                "date": date_str,
                "parent_type": "minister",
                "child_type": CITIZEN,
                "rel_type": rel_type,
            },
        )