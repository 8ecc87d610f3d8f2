"""The node database: reader-cycle transactions, schema checks and connection setup."""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Mapping
from datetime import timedelta
from typing import Iterable, Optional, Sequence, Tuple, Type, Union

from .model import Address, Application, ApplicationStatus, Epoch, EpochStatus, Input, Output
from .reads import ReadRepository, _APPLICATION_COLUMNS, _EPOCH_COLUMNS, _application, _epoch
from .schema import Schema, SchemaError, database_path
from .writes import (
    InsertRowError,
    RepositoryError,
    UpdateRowError,
    _blob,
    _db_error_message,
    _format_address,
    _from_db_int,
    _text,
    _to_db_int,
)

logger = logging.getLogger(__name__)

EpochInputs = Union[
    Mapping[Epoch, Sequence[Input]],
    Iterable[Tuple[Epoch, Sequence[Input]]],
]


def _execute(
    conn: sqlite3.Connection,
    error: Type[RepositoryError],
    label: str,
    sql: str,
    params: dict,
) -> sqlite3.Cursor:
    try:
        return conn.execute(sql, params)
    except sqlite3.Error as exc:
        raise error(f"{label}: {_db_error_message(exc)}") from exc


class Database(ReadRepository):
    """Full access to the node database, including the reader's transactions."""

    def store_epoch_and_inputs_transaction(
        self,
        epoch_inputs: Optional[EpochInputs],
        block_number: int,
        contract_address: Address,
    ) -> tuple[dict[int, int], dict[int, list[int]]]:
        """Upsert epochs, insert their inputs and set the last processed block atomically.

        Returns a map of epoch index to epoch id and a map of epoch index to
        the ids of the inputs inserted for it.
        """
        label = "unable to insert inputs"
        if epoch_inputs is None:
            pairs: Iterable[Tuple[Epoch, Sequence[Input]]] = ()
        elif isinstance(epoch_inputs, Mapping):
            pairs = epoch_inputs.items()
        else:
            pairs = epoch_inputs

        epoch_ids: dict[int, int] = {}
        input_ids: dict[int, list[int]] = {}
        with self._transaction() as conn:
            for epoch, inputs in pairs:
                address = _blob(epoch.app_address)
                index = _to_db_int(epoch.index)
                _execute(
                    conn,
                    InsertRowError,
                    label,
                    """
                    INSERT INTO epoch
                        (application_address, "index", first_block, last_block, status)
                    VALUES
                        (:address, :index, :first_block, :last_block, :status)
                    ON CONFLICT ("index", application_address)
                    DO UPDATE SET status = excluded.status
                    """,
                    {
                        "address": address,
                        "index": index,
                        "first_block": _to_db_int(epoch.first_block),
                        "last_block": _to_db_int(epoch.last_block),
                        "status": _text(epoch.status),
                    },
                )
                row = _execute(
                    conn,
                    InsertRowError,
                    label,
                    'SELECT id FROM epoch WHERE "index" = :index AND application_address = :address',
                    {"index": index, "address": address},
                ).fetchone()
                epoch_id = _from_db_int(row[0])
                epoch_ids[epoch.index] = epoch_id

                for input_ in inputs:
                    cursor = _execute(
                        conn,
                        InsertRowError,
                        label,
                        """
                        INSERT INTO input
                            ("index", status, raw_data, block_number,
                             application_address, epoch_id, transaction_id)
                        VALUES
                            (:index, :status, :raw_data, :block_number,
                             :address, :epoch_id, :transaction_id)
                        """,
                        {
                            "index": _to_db_int(input_.index),
                            "status": _text(input_.completion_status),
                            "raw_data": bytes(input_.raw_data),
                            "block_number": _to_db_int(input_.block_number),
                            "address": _blob(input_.app_address),
                            "epoch_id": _to_db_int(epoch_id),
                            "transaction_id": _blob(input_.transaction_id),
                        },
                    )
                    input_ids.setdefault(epoch.index, []).append(int(cursor.lastrowid))

            _execute(
                conn,
                InsertRowError,
                label,
                """
                UPDATE application SET last_processed_block = :block
                WHERE contract_address = :address
                """,
                {"block": _to_db_int(block_number), "address": _blob(contract_address)},
            )
        return epoch_ids, input_ids

    def get_all_running_applications(self) -> list[Application]:
        """Return the applications the node is actively handling."""
        return self._applications_by_status(ApplicationStatus.RUNNING)

    def get_all_applications(self) -> list[Application]:
        """Return every stored application."""
        return self._applications_by_status(None)

    def _applications_by_status(
        self, status: Optional[ApplicationStatus]
    ) -> list[Application]:
        sql = f"SELECT {_APPLICATION_COLUMNS} FROM application"
        params: dict = {}
        if status is not None:
            sql += " WHERE status = :status"
            params["status"] = _text(status)
        sql += " ORDER BY id ASC"
        rows = self._fetch_all("failed to get Applications", sql, params)
        return [_application(row) for row in rows]

    def get_last_processed_block(self, app_address: Address) -> int:
        """Return the last block processed for an application."""
        row = self._fetch_one(
            "GetLastProcessedBlock",
            "SELECT last_processed_block FROM application WHERE contract_address = :address",
            {"address": _blob(app_address)},
        )
        if row is None:
            raise RepositoryError(
                "GetLastProcessedBlock failed: no application with contract address "
                f"{_format_address(app_address)}"
            )
        return _from_db_int(row["last_processed_block"])

    def get_previous_epochs_with_open_claims(
        self, app_address: Address, block: int
    ) -> list[Epoch]:
        """Return epochs with a submitted claim whose last block is before ``block``."""
        rows = self._fetch_all(
            "failed to get epochs with open claims",
            f"""
            SELECT {_EPOCH_COLUMNS} FROM epoch
            WHERE application_address = :address AND status = :status
                  AND last_block < :block
            ORDER BY "index" ASC
            """,
            {
                "address": _blob(app_address),
                "status": _text(EpochStatus.CLAIM_SUBMITTED),
                "block": _to_db_int(block),
            },
        )
        return [_epoch(row) for row in rows]

    def update_epochs(
        self, app_address: Address, claims: Sequence[Epoch], last_claim_check_block: int
    ) -> None:
        """Store the epochs' statuses and the application's last claim check block."""
        label = "unable to update epochs status"
        with self._transaction() as conn:
            for claim in claims:
                cursor = _execute(
                    conn,
                    UpdateRowError,
                    label,
                    "UPDATE epoch SET status = :status WHERE id = :id",
                    {"status": _text(claim.status), "id": _to_db_int(claim.id)},
                )
                if cursor.rowcount != 1:
                    raise UpdateRowError(
                        f"{label}: no row affected when updating claim {claim.index}"
                    )
            _execute(
                conn,
                UpdateRowError,
                label,
                """
                UPDATE application SET last_claim_check_block = :block
                WHERE contract_address = :address
                """,
                {"block": _to_db_int(last_claim_check_block), "address": _blob(app_address)},
            )

    def update_output_execution_transaction(
        self, app_address: Address, executed_outputs: Sequence[Output], block_number: int
    ) -> None:
        """Store the outputs' execution transactions and the last output check block."""
        label = "unable to update outputs"
        with self._transaction() as conn:
            for output in executed_outputs:
                cursor = _execute(
                    conn,
                    UpdateRowError,
                    label,
                    "UPDATE output SET transaction_hash = :hash WHERE id = :id",
                    {"hash": _blob(output.transaction_hash), "id": _to_db_int(output.id)},
                )
                if cursor.rowcount != 1:
                    raise UpdateRowError(
                        f"{label}: no rows affected when updating output {output.index} "
                        f"from app {_format_address(app_address)}"
                    )
            _execute(
                conn,
                UpdateRowError,
                label,
                """
                UPDATE application SET last_output_check_block = :block
                WHERE contract_address = :address
                """,
                {"block": _to_db_int(block_number), "address": _blob(app_address)},
            )


def validate_schema(endpoint: str) -> int:
    """Return the schema version at ``endpoint``; raise SchemaError if it is wrong."""
    with Schema(endpoint) as schema:
        return schema.validate_version()


def validate_schema_with_retry(
    endpoint: str, max_retries: int, delay: Union[float, timedelta]
) -> int:
    """Validate the schema up to ``max_retries`` times, sleeping ``delay`` after failures."""
    seconds = delay.total_seconds() if isinstance(delay, timedelta) else float(delay)
    last_error: Optional[Exception] = None
    for _ in range(max_retries):
        try:
            return validate_schema(endpoint)
        except (SchemaError, sqlite3.Error) as exc:
            last_error = exc
        time.sleep(seconds)
    raise SchemaError(
        f"failed to validate schema after {max_retries} attempts: {last_error}"
    ) from last_error


def connect(endpoint: str) -> Database:
    """Open the database at ``endpoint`` once its schema has been validated."""
    try:
        validate_schema_with_retry(endpoint, 5, 3.0)
    except SchemaError as exc:
        raise RepositoryError(f"unable to validate database schema version: {exc}") from exc
    try:
        connection = sqlite3.connect(database_path(endpoint))
    except sqlite3.Error as exc:
        raise RepositoryError(f"unable to create connection: {exc}") from exc
    return Database(connection)