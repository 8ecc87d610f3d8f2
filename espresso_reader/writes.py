"""Write access to the rollups database: inserts and status updates."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional, Sequence

from .model import (
    Address,
    Application,
    ApplicationStatus,
    Epoch,
    Hash,
    Input,
    NodePersistentConfig,
    Output,
    Report,
    Snapshot,
)

logger = logging.getLogger(__name__)

_UINT64_LIMIT = 1 << 64
_INT64_LIMIT = 1 << 63


class RepositoryError(Exception):
    """Base class for repository failures."""


class InsertRowError(RepositoryError):
    """A row could not be inserted."""


class UpdateRowError(RepositoryError):
    """A row could not be updated."""


class TransactionError(RepositoryError):
    """A transaction could not be started or committed."""


def _to_db_int(value: int) -> int:
    """Store an unsigned 64-bit value in a signed 64-bit column."""
    value = int(value)
    if not 0 <= value < _UINT64_LIMIT:
        raise ValueError(f"value out of unsigned 64-bit range: {value}")
    return value - _UINT64_LIMIT if value >= _INT64_LIMIT else value


def _from_db_int(value: Optional[int]) -> int:
    """Read back an unsigned 64-bit value stored by ``_to_db_int``."""
    if value is None:
        return 0
    value = int(value)
    return value + _UINT64_LIMIT if value < 0 else value


def _text(value: object) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _blob(value: Optional[bytes]) -> Optional[bytes]:
    return None if value is None else bytes(value)


def _pack_hashes(hashes: Optional[Sequence[Hash]]) -> Optional[bytes]:
    if not hashes:
        return None
    return b"".join(bytes(h) for h in hashes)


def _format_address(address: Address) -> str:
    return "0x" + bytes(address).hex()


def _db_error_message(exc: sqlite3.Error) -> str:
    """Describe a database error in terms of the violated constraint."""
    text = str(exc)
    if "UNIQUE constraint failed" in text:
        return f"duplicate key value violates unique constraint ({text})"
    if "FOREIGN KEY constraint failed" in text:
        return f"insert or update violates foreign key constraint ({text})"
    return text


class WriteRepository:
    """Inserts and updates rows over an open SQLite connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        connection.isolation_level = None
        connection.execute("PRAGMA foreign_keys = ON")
        self._connection: Optional[sqlite3.Connection] = connection

    @property
    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RepositoryError("database connection is closed")
        return self._connection

    def close(self) -> None:
        """Close the underlying connection; safe to call twice."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._conn
        try:
            conn.execute("BEGIN")
        except sqlite3.Error as exc:
            raise TransactionError(f"unable to begin transaction: {exc}") from exc
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        try:
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise TransactionError(f"unable to commit transaction: {exc}") from exc

    @staticmethod
    def _insert(conn: sqlite3.Connection, sql: str, params: dict) -> int:
        try:
            cursor = conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise InsertRowError(f"unable to insert row: {_db_error_message(exc)}") from exc
        return int(cursor.lastrowid)

    def insert_node_config(self, config: NodePersistentConfig) -> None:
        """Store the node configuration unless one is already stored."""
        self._insert(
            self._conn,
            """
            INSERT INTO node_config
                (default_block, input_box_deployment_block, input_box_address, chain_id)
            SELECT :default_block, :deployment_block, :input_box_address, :chain_id
            WHERE NOT EXISTS (SELECT * FROM node_config)
            """,
            {
                "default_block": _text(config.default_block),
                "deployment_block": _to_db_int(config.input_box_deployment_block),
                "input_box_address": _blob(config.input_box_address),
                "chain_id": _to_db_int(config.chain_id),
            },
        )

    def insert_application(self, app: Application) -> int:
        """Insert an application with default execution parameters; return its id."""
        with self._transaction() as conn:
            app_id = self._insert(
                conn,
                """
                INSERT INTO application
                    (contract_address, template_hash, template_uri,
                     last_processed_block, last_claim_check_block,
                     last_output_check_block, status, iconsensus_address)
                VALUES
                    (:contract_address, :template_hash, :template_uri,
                     :last_processed_block, :last_claim_check_block,
                     :last_output_check_block, :status, :iconsensus_address)
                """,
                {
                    "contract_address": _blob(app.contract_address),
                    "template_hash": _blob(app.template_hash),
                    "template_uri": app.template_uri,
                    "last_processed_block": _to_db_int(app.last_processed_block),
                    "last_claim_check_block": _to_db_int(app.last_claim_check_block),
                    "last_output_check_block": _to_db_int(app.last_output_check_block),
                    "status": _text(app.status),
                    "iconsensus_address": _blob(app.iconsensus_address),
                },
            )
            self._insert(
                conn,
                "INSERT INTO execution_parameters (application_id) VALUES (:application_id)",
                {"application_id": app_id},
            )
        return app_id

    def insert_epoch(self, epoch: Epoch) -> int:
        """Insert an epoch and return its id."""
        return self._insert(
            self._conn,
            """
            INSERT INTO epoch
                ("index", first_block, last_block, transaction_hash,
                 claim_hash, status, application_address)
            VALUES
                (:index, :first_block, :last_block, :transaction_hash,
                 :claim_hash, :status, :application_address)
            """,
            {
                "index": _to_db_int(epoch.index),
                "first_block": _to_db_int(epoch.first_block),
                "last_block": _to_db_int(epoch.last_block),
                "transaction_hash": _blob(epoch.transaction_hash),
                "claim_hash": _blob(epoch.claim_hash),
                "status": _text(epoch.status),
                "application_address": _blob(epoch.app_address),
            },
        )

    def insert_input(self, input_: Input) -> int:
        """Insert an input and return its id."""
        return self._insert(
            self._conn,
            """
            INSERT INTO input
                ("index", status, raw_data, block_number, machine_hash,
                 outputs_hash, application_address, epoch_id)
            VALUES
                (:index, :status, :raw_data, :block_number, :machine_hash,
                 :outputs_hash, :application_address, :epoch_id)
            """,
            {
                "index": _to_db_int(input_.index),
                "status": _text(input_.completion_status),
                "raw_data": bytes(input_.raw_data),
                "block_number": _to_db_int(input_.block_number),
                "machine_hash": _blob(input_.machine_hash),
                "outputs_hash": _blob(input_.outputs_hash),
                "application_address": _blob(input_.app_address),
                "epoch_id": _to_db_int(input_.epoch_id),
            },
        )

    def insert_output(self, output: Output) -> int:
        """Insert an output and return its id."""
        return self._insert(
            self._conn,
            """
            INSERT INTO output
                ("index", raw_data, hash, output_hashes_siblings, input_id, transaction_hash)
            VALUES
                (:index, :raw_data, :hash, :siblings, :input_id, :transaction_hash)
            """,
            {
                "index": _to_db_int(output.index),
                "raw_data": bytes(output.raw_data),
                "hash": _blob(output.hash),
                "siblings": _pack_hashes(output.output_hashes_siblings),
                "input_id": _to_db_int(output.input_id),
                "transaction_hash": _blob(output.transaction_hash),
            },
        )

    def insert_report(self, report: Report) -> None:
        """Insert a report."""
        self._insert(
            self._conn,
            """
            INSERT INTO report ("index", raw_data, input_id)
            VALUES (:index, :raw_data, :input_id)
            """,
            {
                "index": _to_db_int(report.index),
                "raw_data": bytes(report.raw_data),
                "input_id": _to_db_int(report.input_id),
            },
        )

    def insert_snapshot(self, snapshot: Snapshot) -> int:
        """Insert a snapshot and return its id."""
        return self._insert(
            self._conn,
            """
            INSERT INTO snapshot (input_id, application_address, uri)
            VALUES (:input_id, :app_address, :uri)
            """,
            {
                "input_id": _to_db_int(snapshot.input_id),
                "app_address": _blob(snapshot.app_address),
                "uri": snapshot.uri,
            },
        )

    def update_application_status(
        self, app_address: Address, new_status: ApplicationStatus
    ) -> None:
        """Set an application's status; raise if no such application exists."""
        try:
            cursor = self._conn.execute(
                "UPDATE application SET status = :status WHERE contract_address = :address",
                {"status": _text(new_status), "address": _blob(app_address)},
            )
        except sqlite3.Error as exc:
            raise UpdateRowError(
                f"UpdateApplicationStatus Exec failed: {_db_error_message(exc)}"
            ) from exc
        if cursor.rowcount == 0:
            logger.debug(
                "UpdateApplicationStatus affected no rows app=%s", _format_address(app_address)
            )
            raise UpdateRowError(
                f"no application found with contract address: {_format_address(app_address)}"
            )