# orgchart-loader

Loads government organisation chart changes into an entity graph service.
Ministers, departments and people are created as entities. The links
between them (`AS_MINISTER`, `AS_DEPARTMENT`, `AS_APPOINTED`, `RENAMED_TO`,
`MERGED_INTO`) are stored as relationships that start and end on given dates.

The service offers two HTTP APIs. The update API creates and changes
entities. The query API searches entities and their relationships. This
package is a client of both.

## Installation

```
pip install .
```

To install the test tools as well:

```
pip install .[test]
```

## Command line

```
orgchart-loader --data /path/to/data/directory
```

Options. Each option can be written with one dash or with two, for example
`-data` or `--data`.

| Option              | Meaning                                                        | Default                              |
|---------------------|----------------------------------------------------------------|--------------------------------------|
| `--data`            | Directory holding the transaction CSV files (required)         |                                      |
| `--init`            | Create the government node before processing                   | off                                  |
| `--type`            | `organisation` (ministers, departments) or `person` (citizens) | `organisation`                       |
| `--update_endpoint` | Update API endpoint                                            | `http://localhost:8080/entities`     |
| `--query_endpoint`  | Query API endpoint                                             | `http://localhost:8081/v1/entities`  |

Examples:

```
orgchart-loader --data ./data --init
orgchart-loader --data ./data --type person
orgchart-loader --data ./data --update_endpoint http://custom:8080/entities --query_endpoint http://custom:8081/v1/entities
```

The command prints each transaction as it is processed. It exits with
status 0 on success. It exits with status 1 in these cases:

- the data directory is missing or does not exist;
- the type is not `organisation` or `person`;
- creating the government node fails;
- any transaction fails. Processing stops at the first failed transaction.

## Transaction files

Every `.csv` file in the data directory is read, in file-name order. The
file name gives the kind of transaction. Names containing `TERMINATE`,
`MOVE`, `MERGE` or `RENAME` hold that kind. All other files hold `ADD`
transactions, for example `2403-38_ADD.csv` or `ADD.csv`.

The first row of each file is a header. Blank rows are skipped. A row with
a different number of fields from the header is an error.

Transactions from all files are merged. They run in `transaction_id` order,
for example `2153/12_tr_01`. The order compares these parts in turn:

1. the part before the first `_`;
2. the middle marker;
3. the trailing sequence, compared as a number.

Columns by kind:

- `ADD`, `TERMINATE`: `transaction_id`, `parent`, `child`, `date`,
  `parent_type`, `child_type`, `rel_type`
- `MOVE`: `transaction_id`, `old_parent`, `new_parent`, `child`, `type`, `date`
- `RENAME`: `transaction_id`, `old`, `new`, `type`, `date`
- `MERGE`: `transaction_id`, `old` (for example `[Minister A, Minister B]`),
  `new`, `date`

Dates are written as `YYYY-MM-DD` and stored as `YYYY-MM-DDT00:00:00Z`.

### What each kind does

The `--type` option decides which transactions are applied.

In `organisation` mode:

- **ADD** creates ministers and departments and skips other child types.
- **TERMINATE** ends a relationship. A minister that still has active
  departments cannot be terminated.
- **MOVE** moves a department to another minister.
- **RENAME** creates a new minister and moves the old minister's active
  departments to it. It then ends the old minister's government link and
  records `RENAMED_TO`.
- **MERGE** creates a new minister and moves every old minister's
  departments to it. It then ends each old minister's government link and
  records `MERGED_INTO`.

In `person` mode:

- **ADD** links citizens to organisations and skips other child types. A
  person who already exists under the same name is reused instead of being
  created again. More than one match is an error.
- **TERMINATE** ends a person's relationship.
- **MOVE** moves a citizen from one minister to another.
- **RENAME** and **MERGE** are ignored.

New entity IDs are built from the first seven characters of the
transaction ID, the first three letters of the child type and a running
counter, for example `2153/12_min_1`.

## Using the library

```python
from orgchart_loader.client import Client
from orgchart_loader.organisations import create_government_node, add_org_entity
from orgchart_loader.transactions import process_transactions

client = Client("http://localhost:8080/entities", "http://localhost:8081/v1/entities")
create_government_node(client)

counters = {"minister": 0}
counters["minister"] = add_org_entity(
    client,
    {
        "parent": "Government of Sri Lanka",
        "child": "Minister of Defence",
        "date": "2019-12-10",
        "parent_type": "government",
        "child_type": "minister",
        "rel_type": "AS_MINISTER",
        "transaction_id": "2153/12_tr_01",
    },
    counters,
)

process_transactions(client, "./data", "organisation")
```

Modules:

- `orgchart_loader.models` holds the records sent to and received from the
  service: `Entity`, `Kind`, `TimeBasedValue`, `Relationship`,
  `SearchCriteria`, `SearchResult` and related classes. It also provides
  the helpers `to_iso_date` and `unmarshal_name`.
- `orgchart_loader.client` holds `Client`, which has these methods:
  - `create_entity`, `update_entity`, `delete_entity`
  - `get_root_entities`, `search_entities`, `get_entity_metadata`
  - `get_entity_attribute`, `get_related_entities`, `get_all_related_entities`

  `Client` takes an optional `timeout` in seconds, which defaults to 30.
- `orgchart_loader.organisations` holds these functions:
  - `create_government_node`, `add_org_entity`, `terminate_org_entity`
  - `move_department`, `rename_minister`, `merge_ministers`
- `orgchart_loader.people` holds `add_person_entity`,
  `terminate_person_entity` and `move_person`.
- `orgchart_loader.transactions` holds these functions:
  - `load_transactions`, `file_type_for`
  - `transaction_sort_key`, `process_transactions`
- `orgchart_loader.cli` holds `main` and `build_parser`.

Errors:

- A failed HTTP call, an unexpected status code or an undecodable response
  raises `orgchart_loader.client.ApiError`. It carries a `status_code`
  where one was received.
- A transaction that cannot be applied raises
  `orgchart_loader.organisations.OperationError`. For example, a named
  minister may not exist.
- An unknown process type passed to `process_transactions` raises
  `ValueError`.

## What this package does not do

This package does not include the entity graph service. It does not store
anything itself. Both the update API and the query API must already be
running at the configured endpoints. It does not undo earlier changes
when a later transaction fails.