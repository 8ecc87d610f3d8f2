"""Database schema versioning with bundled migrations."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

logger = logging.getLogger(__name__)

EXPECTED_VERSION = 2


class SchemaError(Exception):
    """Raised when the database schema is missing or has the wrong version."""


@dataclass(frozen=True)
class _Migration:
    version: int
    up: str
    down: str


_MIGRATIONS = (
    _Migration(
        1,
        """
        CREATE TABLE node_config (
            default_block TEXT NOT NULL,
            input_box_deployment_block INTEGER NOT NULL,
            input_box_address BLOB NOT NULL,
            chain_id INTEGER NOT NULL
        );
        CREATE TABLE application (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            contract_address BLOB NOT NULL UNIQUE,
            template_hash BLOB NOT NULL,
            template_uri TEXT NOT NULL,
            last_processed_block INTEGER NOT NULL,
            last_claim_check_block INTEGER NOT NULL,
            last_output_check_block INTEGER NOT NULL,
            status TEXT NOT NULL,
            iconsensus_address BLOB NOT NULL
        );
        CREATE TABLE execution_parameters (
            application_id INTEGER PRIMARY KEY
                REFERENCES application(id) ON DELETE CASCADE,
            advance_inc_cycles INTEGER NOT NULL DEFAULT 4194304,
            advance_max_cycles INTEGER NOT NULL DEFAULT 4611686018427387903,
            inspect_inc_cycles INTEGER NOT NULL DEFAULT 4194304,
            inspect_max_cycles INTEGER NOT NULL DEFAULT 4611686018427387903,
            advance_inc_deadline INTEGER NOT NULL DEFAULT 10000000000,
            advance_max_deadline INTEGER NOT NULL DEFAULT 180000000000,
            inspect_inc_deadline INTEGER NOT NULL DEFAULT 10000000000,
            inspect_max_deadline INTEGER NOT NULL DEFAULT 180000000000,
            load_deadline INTEGER NOT NULL DEFAULT 300000000000,
            store_deadline INTEGER NOT NULL DEFAULT 180000000000,
            fast_deadline INTEGER NOT NULL DEFAULT 5000000000,
            max_concurrent_inspects INTEGER NOT NULL DEFAULT 10
        );
        CREATE TABLE epoch (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            application_address BLOB NOT NULL
                REFERENCES application(contract_address),
            index_ INTEGER,
            "index" INTEGER NOT NULL,
            first_block INTEGER NOT NULL,
            last_block INTEGER NOT NULL,
            claim_hash BLOB,
            transaction_hash BLOB,
            status TEXT NOT NULL,
            UNIQUE ("index", application_address)
        );
        CREATE TABLE input (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            "index" INTEGER NOT NULL,
            raw_data BLOB NOT NULL,
            block_number INTEGER NOT NULL,
            status TEXT NOT NULL,
            machine_hash BLOB,
            outputs_hash BLOB,
            application_address BLOB NOT NULL
                REFERENCES application(contract_address),
            epoch_id INTEGER NOT NULL REFERENCES epoch(id),
            transaction_id BLOB,
            UNIQUE ("index", application_address)
        );
        CREATE TABLE output (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            "index" INTEGER NOT NULL,
            raw_data BLOB NOT NULL,
            hash BLOB,
            output_hashes_siblings BLOB,
            input_id INTEGER NOT NULL REFERENCES input(id),
            transaction_hash BLOB,
            UNIQUE (input_id, "index")
        );
        CREATE TABLE report (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            "index" INTEGER NOT NULL,
            raw_data BLOB NOT NULL,
            input_id INTEGER NOT NULL REFERENCES input(id),
            UNIQUE (input_id, "index")
        );
        CREATE TABLE snapshot (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            input_id INTEGER NOT NULL UNIQUE REFERENCES input(id),
            application_address BLOB NOT NULL
                REFERENCES application(contract_address),
            uri TEXT NOT NULL
        );
        """,
        """
        DROP TABLE IF EXISTS snapshot;
        DROP TABLE IF EXISTS report;
        DROP TABLE IF EXISTS output;
        DROP TABLE IF EXISTS input;
        DROP TABLE IF EXISTS epoch;
        DROP TABLE IF EXISTS execution_parameters;
        DROP TABLE IF EXISTS application;
        DROP TABLE IF EXISTS node_config;
        """,
    ),
    _Migration(
        2,
        """
        CREATE TABLE espresso_nonce (
            sender_address BLOB NOT NULL,
            application_address BLOB NOT NULL,
            nonce INTEGER NOT NULL,
            PRIMARY KEY (sender_address, application_address)
        );
        CREATE TABLE input_index (
            application_address BLOB NOT NULL PRIMARY KEY,
            "index" INTEGER NOT NULL
        );
        """,
        """
        DROP TABLE IF EXISTS input_index;
        DROP TABLE IF EXISTS espresso_nonce;
        """,
    ),
)


def database_path(endpoint: str) -> str:
    """Turn an endpoint (plain path or ``sqlite://`` URL) into a file path."""
    for prefix in ("sqlite:///", "sqlite://"):
        if endpoint.startswith(prefix):
            return endpoint[len(prefix):]
    return endpoint


class Schema:
    """Inspects and migrates the schema of the database at ``endpoint``."""

    def __init__(self, endpoint: str) -> None:
        self._connection: sqlite3.Connection | None = sqlite3.connect(
            database_path(endpoint), isolation_level=None
        )
        self._connection.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations "
            "(version INTEGER NOT NULL PRIMARY KEY, dirty INTEGER NOT NULL DEFAULT 0)"
        )

    @property
    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise SchemaError("schema connection is closed")
        return self._connection

    def _current(self) -> int | None:
        row = self._conn.execute("SELECT version FROM schema_migrations LIMIT 1").fetchone()
        return None if row is None else int(row[0])

    def _apply(self, sql: str, new_version: int | None) -> None:
        record = (
            f"INSERT INTO schema_migrations (version, dirty) VALUES ({int(new_version)}, 0);"
            if new_version is not None
            else ""
        )
        script = f"BEGIN;\n{sql}\nDELETE FROM schema_migrations;\n{record}\nCOMMIT;"
        try:
            self._conn.executescript(script)
        except sqlite3.Error:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise

    def version(self) -> int:
        """Return the applied schema version."""
        current = self._current()
        if current is None:
            raise SchemaError("No valid database schema found")
        return current

    def upgrade(self) -> None:
        """Apply every pending migration; a no-op when already current."""
        current = self._current() or 0
        for migration in _MIGRATIONS:
            if migration.version > current:
                self._apply(migration.up, migration.version)

    def downgrade(self) -> None:
        """Revert every applied migration; a no-op when nothing is applied."""
        current = self._current() or 0
        applied = [m for m in _MIGRATIONS if m.version <= current]
        for position in range(len(applied) - 1, -1, -1):
            previous = applied[position - 1].version if position else None
            self._apply(applied[position].down, previous)

    def close(self) -> None:
        """Release the database connection, logging any failure."""
        if self._connection is None:
            return
        try:
            self._connection.close()
        except sqlite3.Error as exc:
            logger.error("Error closing db connection: %s", exc)
        finally:
            self._connection = None

    def validate_version(self) -> int:
        """Return the version if it is the expected one, else raise SchemaError."""
        version = self.version()
        if version != EXPECTED_VERSION:
            raise SchemaError(
                f"Database schema version mismatch. Expected {EXPECTED_VERSION} but it is {version}"
            )
        return version

    def __enter__(self) -> "Schema":
        return self

    def __exit__(self, *args) -> None:
        self.close()