import json
import re
from urllib.parse import unquote_plus

import pytest
import responses

from orgchart_loader.client import Client
from orgchart_loader.models import Kind, SearchCriteria
from orgchart_loader.organisations import (
    OperationError,
    add_org_entity,
    create_government_node,
    merge_ministers,
    move_department,
    rename_minister,
    terminate_org_entity,
)

UPDATE_URL = "http://localhost:8080/entities"
QUERY_URL = "http://localhost:8081/v1/entities"
GOV = "Government of Sri Lanka"

_UPDATE_PATTERN = re.compile(re.escape(UPDATE_URL) + r"/([^/?]+)$")
_RELATIONS_PATTERN = re.compile(re.escape(QUERY_URL) + r"/([^/?]+)/relations$")
_ALL_RELATIONS_PATTERN = re.compile(re.escape(QUERY_URL) + r"/([^/?]+)/allrelations$")


class FakeServices:
    """In-memory stand-in for the update and query services."""

    def __init__(self):
        self.entities = {}

    def register(self, rsps):
        kw = {"content_type": "application/json"}
        rsps.add_callback(responses.POST, UPDATE_URL, callback=self._create, **kw)
        rsps.add_callback(responses.PUT, _UPDATE_PATTERN, callback=self._update, **kw)
        rsps.add_callback(responses.POST, QUERY_URL + "/search", callback=self._search, **kw)
        rsps.add_callback(responses.POST, _RELATIONS_PATTERN, callback=self._relations, **kw)
        rsps.add_callback(
            responses.POST, _ALL_RELATIONS_PATTERN, callback=self._all_relations, **kw
        )

    @staticmethod
    def _entity_id(pattern, request):
        return unquote_plus(pattern.match(request.url).group(1))

    @staticmethod
    def _render(entity):
        return {
            "id": entity["id"],
            "kind": entity["kind"],
            "created": entity["created"],
            "name": {"startTime": entity["start"], "value": entity["name"]},
            "relationships": [
                {"key": key, "value": value} for key, value in entity["relationships"].items()
            ],
        }

    @staticmethod
    def _merge(entity, entries):
        for entry in entries or []:
            value = entry["value"]
            rel_id = value.get("id") or entry["key"]
            stored = entity["relationships"].get(rel_id)
            if stored is None:
                entity["relationships"][rel_id] = dict(value)
            else:
                stored.update({k: v for k, v in value.items() if v})

    def _create(self, request):
        payload = json.loads(request.body)
        entity_id = payload.get("id", "")
        if not entity_id or entity_id in self.entities:
            return 409, {}, json.dumps({"error": "conflict"})
        entity = {
            "id": entity_id,
            "kind": payload.get("kind", {}),
            "created": payload.get("created", ""),
            "name": payload["name"]["value"],
            "start": payload["name"]["startTime"],
            "relationships": {},
        }
        self._merge(entity, payload.get("relationships"))
        self.entities[entity_id] = entity
        return 201, {}, json.dumps(self._render(entity))

    def _update(self, request):
        entity = self.entities.get(self._entity_id(_UPDATE_PATTERN, request))
        if entity is None:
            return 404, {}, json.dumps({"error": "not found"})
        self._merge(entity, json.loads(request.body).get("relationships"))
        return 200, {}, json.dumps(self._render(entity))

    def _search(self, request):
        criteria = json.loads(request.body)
        kind = criteria.get("kind") or {}

        def matches(entity):
            return (
                (not criteria.get("id") or entity["id"] == criteria["id"])
                and (not kind.get("major") or entity["kind"].get("major") == kind["major"])
                and (not kind.get("minor") or entity["kind"].get("minor") == kind["minor"])
                and (not criteria.get("name") or entity["name"] == criteria["name"])
            )

        body = [
            {
                "id": entity["id"],
                "kind": entity["kind"],
                "name": json.dumps(
                    {
                        "typeUrl": "type.googleapis.com/google.protobuf.StringValue",
                        "value": entity["name"].encode("utf-8").hex(),
                    }
                ),
                "created": entity["created"],
            }
            for entity in self.entities.values()
            if matches(entity)
        ]
        return 200, {}, json.dumps({"body": body})

    def _relations(self, request):
        owner = self.entities.get(self._entity_id(_RELATIONS_PATTERN, request))
        if owner is None:
            return 404, {}, json.dumps({"error": "not found"})
        query = json.loads(request.body)
        start = query.get("startTime")

        def matches(rel):
            return (
                (not query.get("relatedEntityId")
                 or rel.get("relatedEntityId") == query["relatedEntityId"])
                and (not query.get("name") or rel.get("name") == query["name"])
                and (
                    not start
                    or (
                        rel.get("startTime", "") <= start
                        and (not rel.get("endTime") or rel["endTime"] > start)
                    )
                )
            )

        found = [rel for rel in owner["relationships"].values() if matches(rel)]
        return 200, {}, json.dumps(found)

    def _all_relations(self, request):
        owner = self.entities.get(self._entity_id(_ALL_RELATIONS_PATTERN, request))
        if owner is None:
            return 404, {}, json.dumps({"error": "not found"})
        return 200, {}, json.dumps(list(owner["relationships"].values()))


@pytest.fixture
def backend():
    fake = FakeServices()
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        fake.register(rsps)
        yield fake


@pytest.fixture
def client(backend):
    service = Client(UPDATE_URL, QUERY_URL)
    create_government_node(service)
    return service


MINISTER_CASES = [
    ("2153/12_tr_01", GOV, "government", "Minister of Defence", "minister", "AS_MINISTER",
     "2019-12-10"),
    ("2153/12_tr_02", GOV, "government",
     "Minister of Finance, Economic and Policy Development", "minister", "AS_MINISTER",
     "2019-12-10"),
]

DEPARTMENT_CASES = [
    ("2153/12_tr_03", "Minister of Defence", "minister", "Sri Lankan Army", "department",
     "AS_DEPARTMENT", "2019-12-10"),
    ("2153/12_tr_04", "Minister of Finance, Economic and Policy Development", "minister",
     "Department of Taxes", "department", "AS_DEPARTMENT", "2019-12-10"),
    ("2153/12_tr_05", "Minister of Finance, Economic and Policy Development", "minister",
     "Department of Policies", "department", "AS_DEPARTMENT", "2019-12-10"),
]


def _transaction(transaction_id, parent, parent_type, child, child_type, rel_type, date):
    return {
        "parent": parent,
        "child": child,
        "date": date,
        "parent_type": parent_type,
        "child_type": child_type,
        "rel_type": rel_type,
        "transaction_id": transaction_id,
    }


def _add(client, counters, *case):
    counter = add_org_entity(client, _transaction(*case), counters)
    counters[case[4]] += 1
    return counter


def _search(client, minor, name):
    return client.search_entities(SearchCriteria(kind=Kind("Organisation", minor), name=name))


def _only_id(client, minor, name):
    results = _search(client, minor, name)
    assert len(results) == 1
    return results[0].id


def _relation(client, owner_id, target_id, name):
    return next(
        (
            rel
            for rel in client.get_all_related_entities(owner_id)
            if rel.related_entity_id == target_id and rel.name == name
        ),
        None,
    )


def _active_departments(client, owner_id):
    return sum(
        1
        for rel in client.get_all_related_entities(owner_id)
        if rel.name == "AS_DEPARTMENT" and rel.end_time == ""
    )


def _seed_cabinet(client):
    counters = {"minister": 0}
    for case in MINISTER_CASES:
        _add(client, counters, *case)
    counters = {"department": 0}
    for case in DEPARTMENT_CASES:
        _add(client, counters, *case)


def _seed_moved(client):
    _seed_cabinet(client)
    add_org_entity(
        client,
        _transaction("2153/12_tr_06", GOV, "government", "Minister of Education", "minister",
                     "AS_MINISTER", "2024-01-01"),
        {"minister": 2},
    )
    move_department(
        client,
        {
            "old_parent": "Minister of Finance, Economic and Policy Development",
            "new_parent": "Minister of Education",
            "child": "Department of Policies",
            "type": "AS_DEPARTMENT",
            "date": "2024-01-01",
        },
    )


def _seed_renamed(client):
    _seed_moved(client)
    return rename_minister(
        client,
        {
            "old": "Minister of Finance, Economic and Policy Development",
            "new": "Minister of Finance",
            "type": "AS_MINISTER",
            "date": "2024-01-01",
            "transaction_id": "2153/13_tr_01",
        },
        {"minister": 2},
    )


def test_create_government_node(backend):
    service = Client(UPDATE_URL, QUERY_URL)
    government = create_government_node(service)
    assert government.id == "gov_01"
    assert government.kind == Kind("Organisation", "government")
    assert government.name.value == GOV
    assert government.created == "2024-01-01T00:00:00Z"


def test_create_government_node_twice_fails(client):
    with pytest.raises(OperationError, match="failed to create government entity"):
        create_government_node(client)


def test_create_ministers(client):
    counters = {"minister": 0}
    expected_ids = ["2153/12_min_1", "2153/12_min_2"]
    for index, case in enumerate(MINISTER_CASES):
        assert _add(client, counters, *case) == index + 1
        results = _search(client, "minister", case[3])
        assert len(results) == 1
        assert results[0].name == case[3]
        assert results[0].id == expected_ids[index]
        gov_id = _only_id(client, "government", GOV)
        rel = _relation(client, gov_id, results[0].id, "AS_MINISTER")
        assert rel.start_time == "2019-12-10T00:00:00Z"
        assert rel.end_time == ""
        assert rel.id == f"gov_01_{results[0].id}"


def test_create_departments(client):
    counters = {"minister": 0}
    for case in MINISTER_CASES:
        _add(client, counters, *case)
    counters = {"department": 0}
    expected_ids = ["2153/12_dep_1", "2153/12_dep_2", "2153/12_dep_3"]
    for index, case in enumerate(DEPARTMENT_CASES):
        assert _add(client, counters, *case) == index + 1
        results = _search(client, "department", case[3])
        assert len(results) == 1
        assert results[0].name == case[3]
        assert results[0].id == expected_ids[index]
        minister_id = _only_id(client, "minister", case[1])
        rel = _relation(client, minister_id, results[0].id, "AS_DEPARTMENT")
        assert rel.end_time == ""


def test_add_org_entity_leaves_counters_untouched(client):
    counters = {"minister": 5}
    counter = add_org_entity(client, _transaction(*MINISTER_CASES[0]), counters)
    assert counter == 6
    assert counters == {"minister": 5}
    assert _only_id(client, "minister", "Minister of Defence") == "2153/12_min_6"


def test_add_org_entity_unknown_child_type(client):
    with pytest.raises(OperationError, match="unknown child type: department"):
        add_org_entity(client, _transaction(*DEPARTMENT_CASES[0]), {"minister": 0})


def test_add_org_entity_bad_date(client):
    case = list(MINISTER_CASES[0])
    case[6] = "2019/12/10"
    with pytest.raises(OperationError, match="failed to parse date"):
        add_org_entity(client, _transaction(*case), {"minister": 0})


def test_add_org_entity_missing_parent(client):
    case = ("2153/12_tr_03", "Minister of Nothing", "minister", "Orphan Office", "department",
            "AS_DEPARTMENT", "2019-12-10")
    with pytest.raises(OperationError, match="parent entity not found: Minister of Nothing"):
        add_org_entity(client, _transaction(*case), {"department": 0})


def test_terminate_department(client):
    _seed_cabinet(client)
    terminate_org_entity(
        client,
        {
            "parent": "Minister of Defence",
            "child": "Sri Lankan Army",
            "date": "2024-01-01",
            "parent_type": "minister",
            "child_type": "department",
            "rel_type": "AS_DEPARTMENT",
        },
    )
    minister_id = _only_id(client, "minister", "Minister of Defence")
    department_id = _only_id(client, "department", "Sri Lankan Army")
    rel = _relation(client, minister_id, department_id, "AS_DEPARTMENT")
    assert rel.end_time == "2024-01-01T00:00:00Z"


def test_terminate_department_twice_fails(client):
    _seed_cabinet(client)
    transaction = {
        "parent": "Minister of Defence",
        "child": "Sri Lankan Army",
        "date": "2024-01-01",
        "parent_type": "minister",
        "child_type": "department",
        "rel_type": "AS_DEPARTMENT",
    }
    terminate_org_entity(client, transaction)
    with pytest.raises(OperationError, match="no active relationship found"):
        terminate_org_entity(client, transaction)


def test_terminate_minister(client):
    _seed_cabinet(client)
    terminate_org_entity(
        client,
        {
            "parent": "Minister of Defence",
            "child": "Sri Lankan Army",
            "date": "2024-01-01",
            "parent_type": "minister",
            "child_type": "department",
            "rel_type": "AS_DEPARTMENT",
        },
    )
    terminate_org_entity(
        client,
        {
            "parent": GOV,
            "child": "Minister of Defence",
            "date": "2024-01-01",
            "parent_type": "government",
            "child_type": "minister",
            "rel_type": "AS_MINISTER",
        },
    )
    gov_id = _only_id(client, "government", GOV)
    minister_id = _only_id(client, "minister", "Minister of Defence")
    rel = _relation(client, gov_id, minister_id, "AS_MINISTER")
    assert rel.end_time == "2024-01-01T00:00:00Z"


def test_move_department(client):
    _seed_moved(client)
    new_id = _only_id(client, "minister", "Minister of Education")
    department_id = _only_id(client, "department", "Department of Policies")
    new_rel = _relation(client, new_id, department_id, "AS_DEPARTMENT")
    assert new_rel.start_time == "2024-01-01T00:00:00Z"
    assert new_rel.end_time == ""
    old_id = _only_id(client, "minister", "Minister of Finance, Economic and Policy Development")
    old_rel = _relation(client, old_id, department_id, "AS_DEPARTMENT")
    assert old_rel.end_time == "2024-01-01T00:00:00Z"


def test_rename_minister(client):
    counter = _seed_renamed(client)
    assert counter > 0
    new_id = _only_id(client, "minister", "Minister of Finance")
    old_id = _only_id(client, "minister", "Minister of Finance, Economic and Policy Development")

    renamed = _relation(client, old_id, new_id, "RENAMED_TO")
    assert renamed.start_time == "2024-01-01T00:00:00Z"
    assert renamed.end_time == ""

    gov_id = _only_id(client, "government", GOV)
    assert _relation(client, gov_id, old_id, "AS_MINISTER").end_time == "2024-01-01T00:00:00Z"
    new_gov = _relation(client, gov_id, new_id, "AS_MINISTER")
    assert new_gov.start_time == "2024-01-01T00:00:00Z"
    assert new_gov.end_time == ""

    assert _active_departments(client, old_id) == 0
    assert _active_departments(client, new_id) > 0


def test_merge_ministers(client):
    _seed_renamed(client)
    counter = merge_ministers(
        client,
        {
            "old": "[Minister of Finance, Minister of Education]",
            "new": "Minister of Finance and Education",
            "date": "2025-01-01",
            "transaction_id": "2154/13_tr_01",
        },
        {"minister": 0},
    )
    assert counter == 1
    new_id = _only_id(client, "minister", "Minister of Finance and Education")
    old1_id = _only_id(client, "minister", "Minister of Finance")
    old2_id = _only_id(client, "minister", "Minister of Education")

    for old_id in (old1_id, old2_id):
        merged = _relation(client, old_id, new_id, "MERGED_INTO")
        assert merged.start_time == "2025-01-01T00:00:00Z"
        assert merged.end_time == ""

    gov_id = _only_id(client, "government", GOV)
    assert _relation(client, gov_id, old1_id, "AS_MINISTER").end_time == "2025-01-01T00:00:00Z"
    assert _relation(client, gov_id, old2_id, "AS_MINISTER").end_time == "2025-01-01T00:00:00Z"
    new_gov = _relation(client, gov_id, new_id, "AS_MINISTER")
    assert new_gov.start_time == "2025-01-01T00:00:00Z"
    assert new_gov.end_time == ""

    assert _active_departments(client, new_id) >= 2
    assert _active_departments(client, old1_id) == 0
    assert _active_departments(client, old2_id) == 0


def test_terminate_non_existent_minister(client):
    with pytest.raises(OperationError, match="child entity not found: Non Existent Minister"):
        terminate_org_entity(
            client,
            {
                "parent": GOV,
                "child": "Non Existent Minister",
                "date": "2025-01-01",
                "parent_type": "government",
                "child_type": "minister",
                "rel_type": "AS_MINISTER",
            },
        )


def test_terminate_minister_with_children(client):
    counters = {"minister": 0, "department": 0}
    add_org_entity(
        client,
        _transaction("2154/14_tr_01", GOV, "government", "Minister to Terminate", "minister",
                     "AS_MINISTER", "2025-01-01"),
        counters,
    )
    add_org_entity(
        client,
        _transaction("2154/14_tr_02", "Minister to Terminate", "minister",
                     "Department Under Minister", "department", "AS_DEPARTMENT", "2025-01-01"),
        counters,
    )
    minister_id = _only_id(client, "minister", "Minister to Terminate")
    assert _active_departments(client, minister_id) == 1

    with pytest.raises(OperationError, match="cannot terminate minister with active departments"):
        terminate_org_entity(
            client,
            {
                "parent": GOV,
                "child": "Minister to Terminate",
                "date": "2025-01-02",
                "parent_type": "government",
                "child_type": "minister",
                "rel_type": "AS_MINISTER",
            },
        )
    gov_id = _only_id(client, "government", GOV)
    assert _relation(client, gov_id, minister_id, "AS_MINISTER").end_time == ""


def test_move_department_to_non_existent_minister(client):
    _seed_cabinet(client)
    with pytest.raises(OperationError, match="new parent entity not found: Non Existent Minister"):
        move_department(
            client,
            {
                "old_parent": "Minister of Finance, Economic and Policy Development",
                "new_parent": "Non Existent Minister",
                "child": "Department of Policies",
                "type": "AS_DEPARTMENT",
                "date": "2025-01-01",
            },
        )


def test_merge_non_existent_minister(client):
    with pytest.raises(OperationError, match="old minister not found: Non Existent Minister"):
        merge_ministers(
            client,
            {
                "old": "[Non Existent Minister]",
                "new": "New Merged Minister",
                "date": "2025-01-01",
                "transaction_id": "2154/14_tr_03",
            },
            {"minister": 0},
        )
    assert len(_search(client, "minister", "New Merged Minister")) == 1


def test_create_duplicate_minister(client):
    counters = {"minister": 0}
    first = add_org_entity(
        client,
        _transaction("2154/15_tr_01", GOV, "government", "Duplicate Minister", "minister",
                     "AS_MINISTER", "2025-01-01"),
        counters,
    )
    counters["minister"] += 1
    second = add_org_entity(
        client,
        _transaction("2154/15_tr_02", GOV, "government", "Duplicate Minister", "minister",
                     "AS_MINISTER", "2025-01-02"),
        counters,
    )
    assert (first, second) == (1, 2)
    results = _search(client, "minister", "Duplicate Minister")
    assert len(results) == 2
    assert {result.id for result in results} == {"2154/15_min_1", "2154/15_min_2"}