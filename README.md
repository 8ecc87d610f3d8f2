# espresso-reader

Storage and support code for a rollups node reader. It keeps track of
applications, their epochs, the inputs that arrive for them, and the outputs,
reports and snapshots produced while processing those inputs. Data is kept in
an SQLite database file, using only the Python standard library.

## What is inside

- `espresso_reader.model` – the records the node works with (`Application`,
  `Epoch`, `Input`, `Output`, `Report`, `Snapshot`, `NodePersistentConfig`,
  `MachineConfig`, `ExecutionParameters`), the status enums
  (`InputCompletionStatus`, `ApplicationStatus`, `DefaultBlock`,
  `EpochStatus`) and the helpers `hex_to_address` (20 bytes), `hex_to_hash`
  (32 bytes) and `hex_to_bytes`. Addresses and hashes are plain `bytes`.
- `espresso_reader.schema` – `Schema(endpoint)`, which opens the database at a
  file path or `sqlite://` URL and can `upgrade()`, `downgrade()`, report its
  `version()` and `validate_version()`. The expected version is 2; a missing or
  different version raises `SchemaError`. `Schema` is a context manager.
- `espresso_reader.writes` – `WriteRepository`, with inserts for node config,
  applications (together with their default execution parameters), epochs,
  inputs, outputs, reports and snapshots, and `update_application_status`.
  Failures raise `InsertRowError`, `UpdateRowError` or `TransactionError`, all
  subclasses of `RepositoryError`.
- `espresso_reader.reads` – `ReadRepository`, which adds lookups
  (`get_application`, `get_epoch`, `get_input`, `get_output`, `get_report`,
  `get_snapshot`, `get_node_config`, …) and the Espresso nonce and input-index
  counters (`get_espresso_nonce`, `update_espresso_nonce`, `get_input_index`,
  `update_input_index`). Single-row lookups return `None` when nothing
  matches; counters start at 0.
- `espresso_reader.repository` – `Database`, which adds the reader's
  transactional operations (`store_epoch_and_inputs_transaction`,
  `update_epochs`, `update_output_execution_transaction`), application
  listings and `get_last_processed_block`, plus `connect`, `validate_schema`
  and `validate_schema_with_retry`.
- `espresso_reader.retry` – `call_with_retry_policy`, which calls a function,
  retrying up to `max_retries` times with `max_delay` (seconds or a
  `timedelta`) between tries.
- `espresso_reader.startup` – `config_logs`, which sends the root logger to
  standard output (coloured only when asked and on a terminal), and
  `setup_node_persistent_config`, which returns the stored node configuration
  or stores the given one.

## Install

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Example

`connect` only opens a database whose schema is already at the expected
version (it retries five times, three seconds apart, before giving up), so a
new database is created with `Schema.upgrade()` first.

```python
from espresso_reader.model import (
    Application,
    ApplicationStatus,
    DefaultBlock,
    hex_to_address,
    hex_to_hash,
)
from espresso_reader.repository import connect
from espresso_reader.schema import Schema
from espresso_reader.startup import config_logs, setup_node_persistent_config

config_logs("info", False)

with Schema("rollups.db") as schema:
    schema.upgrade()

with connect("rollups.db") as db:
    setup_node_persistent_config(
        db,
        DefaultBlock.FINALIZED,
        6850934,
        "0x593E5BCf894D6829Dd26D0810DA7F064406aebB6",
        11155111,
    )

    app_address = hex_to_address("deadbeef")
    db.insert_application(
        Application(
            contract_address=app_address,
            template_hash=hex_to_hash("deadbeef"),
            template_uri="path/to/template",
            status=ApplicationStatus.RUNNING,
            iconsensus_address=hex_to_address("ffffff"),
        )
    )

    for app in db.get_all_running_applications():
        print(app.contract_address.hex(), db.get_last_processed_block(app.contract_address))
```

Retrying a flaky call:

```python
from espresso_reader.retry import call_with_retry_policy

result = call_with_retry_policy(fetch_block, 42, 3, 0.5, "fetch block")
```

The call is made once, and again up to three more times if it raises; the
last error is raised if every attempt fails.

## What it does not do

This package is the storage and start-up support for a reader; it does not
read anything itself. There is no command to run, no service loop, and no
client for a blockchain node or a sequencer: nothing here fetches blocks or
transactions. It also has no server for a networked database; all storage is
a local SQLite file.