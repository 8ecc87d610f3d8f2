"""Read access to the rollups database, plus the nonce and input-index counters."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from .model import (
    HASH_LENGTH,
    Address,
    Application,
    ApplicationStatus,
    DefaultBlock,
    Epoch,
    EpochStatus,
    Hash,
    Input,
    InputCompletionStatus,
    NodePersistentConfig,
    Output,
    Report,
    Snapshot,
)
from .writes import (
    RepositoryError,
    UpdateRowError,
    WriteRepository,
    _blob,
    _db_error_message,
    _format_address,
    _from_db_int,
    _to_db_int,
)

logger = logging.getLogger(__name__)


def _hash(value: Optional[bytes]) -> Optional[Hash]:
    return None if value is None else bytes(value)


def _unpack_hashes(value: Optional[bytes]) -> list[Hash]:
    if not value:
        return []
    data = bytes(value)
    return [data[start:start + HASH_LENGTH] for start in range(0, len(data), HASH_LENGTH)]


def _epoch(row: sqlite3.Row) -> Epoch:
    return Epoch(
        id=_from_db_int(row["id"]),
        index=_from_db_int(row["index"]),
        first_block=_from_db_int(row["first_block"]),
        last_block=_from_db_int(row["last_block"]),
        claim_hash=_hash(row["claim_hash"]),
        transaction_hash=_hash(row["transaction_hash"]),
        status=EpochStatus(row["status"]),
        app_address=bytes(row["application_address"]),
    )


def _application(row: sqlite3.Row) -> Application:
    return Application(
        id=_from_db_int(row["id"]),
        contract_address=bytes(row["contract_address"]),
        template_hash=bytes(row["template_hash"]),
        template_uri=row["template_uri"],
        last_processed_block=_from_db_int(row["last_processed_block"]),
        last_claim_check_block=_from_db_int(row["last_claim_check_block"]),
        last_output_check_block=_from_db_int(row["last_output_check_block"]),
        status=ApplicationStatus(row["status"]),
        iconsensus_address=bytes(row["iconsensus_address"]),
    )


def _output(row: sqlite3.Row, with_transaction: bool) -> Output:
    return Output(
        id=_from_db_int(row["id"]),
        index=_from_db_int(row["index"]),
        raw_data=bytes(row["raw_data"]),
        hash=_hash(row["hash"]),
        output_hashes_siblings=_unpack_hashes(row["output_hashes_siblings"]),
        input_id=_from_db_int(row["input_id"]),
        transaction_hash=_hash(row["transaction_hash"]) if with_transaction else None,
    )


def _report(row: sqlite3.Row) -> Report:
    return Report(
        id=_from_db_int(row["id"]),
        index=_from_db_int(row["index"]),
        raw_data=bytes(row["raw_data"]),
        input_id=_from_db_int(row["input_id"]),
    )


_EPOCH_COLUMNS = """
    id, application_address, "index", first_block, last_block,
    claim_hash, transaction_hash, status
"""

_APPLICATION_COLUMNS = """
    id, contract_address, template_hash, template_uri, last_processed_block,
    last_claim_check_block, last_output_check_block, status, iconsensus_address
"""

_OUTPUT_SELECT = """
    SELECT o.id, o."index", o.raw_data, o.hash, o.output_hashes_siblings,
           o.input_id, o.transaction_hash
    FROM output o INNER JOIN input i ON o.input_id = i.id
"""

_REPORT_SELECT = """
    SELECT r.id, r."index", r.raw_data, r.input_id
    FROM report r INNER JOIN input i ON r.input_id = i.id
"""


class ReadRepository(WriteRepository):
    """Queries the stored node data; lookups of missing rows return None."""

    def _fetch_one(self, label: str, sql: str, params: dict[str, Any]) -> Optional[sqlite3.Row]:
        try:
            cursor = self._conn.execute(sql, params)
            cursor.row_factory = sqlite3.Row
            return cursor.fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"{label} failed: {_db_error_message(exc)}") from exc

    def _fetch_all(self, label: str, sql: str, params: dict[str, Any]) -> list[sqlite3.Row]:
        try:
            cursor = self._conn.execute(sql, params)
            cursor.row_factory = sqlite3.Row
            return cursor.fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"{label} failed: {_db_error_message(exc)}") from exc

    def get_node_config(self) -> Optional[NodePersistentConfig]:
        """Return the stored node configuration, or None when none is stored."""
        row = self._fetch_one(
            "GetNodeConfig QueryRow",
            """
            SELECT default_block, input_box_deployment_block, input_box_address, chain_id
            FROM node_config
            """,
            {},
        )
        if row is None:
            logger.debug("GetNodeConfig returned no rows")
            return None
        return NodePersistentConfig(
            default_block=DefaultBlock(row["default_block"]),
            input_box_deployment_block=_from_db_int(row["input_box_deployment_block"]),
            input_box_address=bytes(row["input_box_address"]),
            chain_id=_from_db_int(row["chain_id"]),
        )

    def get_application(self, app_address: Address) -> Optional[Application]:
        """Return the application with this contract address, or None."""
        row = self._fetch_one(
            "GetApplication QueryRow",
            f"SELECT {_APPLICATION_COLUMNS} FROM application WHERE contract_address = :address",
            {"address": _blob(app_address)},
        )
        if row is None:
            logger.debug("GetApplication returned no rows app=%s", _format_address(app_address))
            return None
        return _application(row)

    def get_epochs(self, app_address: Address) -> list[Epoch]:
        """Return every epoch of an application, by ascending index."""
        rows = self._fetch_all(
            "GetEpochs",
            f"""
            SELECT {_EPOCH_COLUMNS} FROM epoch
            WHERE application_address = :address
            ORDER BY "index" ASC
            """,
            {"address": _blob(app_address)},
        )
        return [_epoch(row) for row in rows]

    def get_epoch(self, index: int, app_address: Address) -> Optional[Epoch]:
        """Return the epoch with this index for an application, or None."""
        row = self._fetch_one(
            "GetEpoch QueryRow",
            f"""
            SELECT {_EPOCH_COLUMNS} FROM epoch
            WHERE "index" = :index AND application_address = :address
            """,
            {"index": _to_db_int(index), "address": _blob(app_address)},
        )
        if row is None:
            logger.debug(
                "GetEpoch returned no rows app=%s epoch=%d", _format_address(app_address), index
            )
            return None
        return _epoch(row)

    def get_inputs(self, app_address: Address) -> list[Input]:
        """Return an application's inputs (id, index, status, data, epoch) by index."""
        rows = self._fetch_all(
            "GetInputs",
            """
            SELECT id, "index", status, raw_data, epoch_id FROM input
            WHERE application_address = :address
            ORDER BY "index" ASC
            """,
            {"address": _blob(app_address)},
        )
        return [
            Input(
                id=_from_db_int(row["id"]),
                index=_from_db_int(row["index"]),
                completion_status=InputCompletionStatus(row["status"]),
                raw_data=bytes(row["raw_data"]),
                epoch_id=_from_db_int(row["epoch_id"]),
            )
            for row in rows
        ]

    def get_input(self, app_address: Address, index: int) -> Optional[Input]:
        """Return the input with this index for an application, or None."""
        row = self._fetch_one(
            "GetInput QueryRow",
            """
            SELECT id, "index", raw_data, status, block_number, machine_hash,
                   outputs_hash, application_address, epoch_id
            FROM input
            WHERE "index" = :index AND application_address = :address
            """,
            {"index": _to_db_int(index), "address": _blob(app_address)},
        )
        if row is None:
            logger.debug(
                "GetInput returned no rows app=%s index=%d", _format_address(app_address), index
            )
            return None
        return Input(
            id=_from_db_int(row["id"]),
            index=_from_db_int(row["index"]),
            completion_status=InputCompletionStatus(row["status"]),
            raw_data=bytes(row["raw_data"]),
            block_number=_from_db_int(row["block_number"]),
            machine_hash=_hash(row["machine_hash"]),
            outputs_hash=_hash(row["outputs_hash"]),
            app_address=bytes(row["application_address"]),
            epoch_id=_from_db_int(row["epoch_id"]),
        )

    def get_outputs(self, app_address: Address) -> list[Output]:
        """Return every output of an application, by ascending output index."""
        rows = self._fetch_all(
            "GetOutputs",
            f"""{_OUTPUT_SELECT}
            WHERE i.application_address = :address
            ORDER BY o."index" ASC
            """,
            {"address": _blob(app_address)},
        )
        return [_output(row, with_transaction=False) for row in rows]

    def get_outputs_by_input_index(self, app_address: Address, input_index: int) -> list[Output]:
        """Return the outputs of one input of an application, by output index."""
        rows = self._fetch_all(
            "GetOutputs",
            f"""{_OUTPUT_SELECT}
            WHERE i.application_address = :address AND i."index" = :input_index
            ORDER BY o."index" ASC
            """,
            {"address": _blob(app_address), "input_index": _to_db_int(input_index)},
        )
        return [_output(row, with_transaction=False) for row in rows]

    def get_output(self, app_address: Address, index: int) -> Optional[Output]:
        """Return the output with this index for an application, or None."""
        row = self._fetch_one(
            "GetOutput QueryRow",
            f"""{_OUTPUT_SELECT}
            WHERE o."index" = :index AND i.application_address = :address
            """,
            {"index": _to_db_int(index), "address": _blob(app_address)},
        )
        if row is None:
            logger.debug(
                "GetOutput returned no rows app=%s index=%d", _format_address(app_address), index
            )
            return None
        return _output(row, with_transaction=True)

    def get_reports(self, app_address: Address) -> list[Report]:
        """Return every report of an application, by ascending report index."""
        rows = self._fetch_all(
            "GetReports",
            f"""{_REPORT_SELECT}
            WHERE i.application_address = :address
            ORDER BY r."index" ASC
            """,
            {"address": _blob(app_address)},
        )
        return [_report(row) for row in rows]

    def get_reports_by_input_index(self, app_address: Address, input_index: int) -> list[Report]:
        """Return the reports of one input of an application, by report index."""
        rows = self._fetch_all(
            "GetReports",
            f"""{_REPORT_SELECT}
            WHERE i.application_address = :address AND i."index" = :input_index
            ORDER BY r."index" ASC
            """,
            {"address": _blob(app_address), "input_index": _to_db_int(input_index)},
        )
        return [_report(row) for row in rows]

    def get_report(self, app_address: Address, index: int) -> Optional[Report]:
        """Return the report with this index for an application, or None."""
        row = self._fetch_one(
            "GetReport QueryRow",
            f"""{_REPORT_SELECT}
            WHERE r."index" = :index AND i.application_address = :address
            """,
            {"index": _to_db_int(index), "address": _blob(app_address)},
        )
        if row is None:
            logger.debug(
                "GetReport returned no rows app=%s index=%d", _format_address(app_address), index
            )
            return None
        return _report(row)

    def get_snapshot(self, input_index: int, app_address: Address) -> Optional[Snapshot]:
        """Return the snapshot taken after an application's input, or None."""
        row = self._fetch_one(
            "GetSnapshot QueryRow",
            """
            SELECT s.id, s.input_id, s.application_address, s.uri
            FROM snapshot s INNER JOIN input i ON i.id = s.input_id
            WHERE s.application_address = :address AND i."index" = :input_index
            """,
            {"address": _blob(app_address), "input_index": _to_db_int(input_index)},
        )
        if row is None:
            logger.debug(
                "GetSnapshot returned no rows app=%s input_index=%d",
                _format_address(app_address),
                input_index,
            )
            return None
        return Snapshot(
            id=_from_db_int(row["id"]),
            input_id=_from_db_int(row["input_id"]),
            app_address=bytes(row["application_address"]),
            uri=row["uri"],
        )

    def get_espresso_nonce(self, sender_address: Address, app_address: Address) -> int:
        """Return the sender's nonce for an application; 0 when none is stored."""
        row = self._fetch_one(
            "GetEspressoNonce QueryRow",
            """
            SELECT nonce FROM espresso_nonce
            WHERE sender_address = :sender AND application_address = :address
            """,
            {"sender": _blob(sender_address), "address": _blob(app_address)},
        )
        if row is None:
            logger.debug(
                "GetEspressoNonce returned no rows sender=%s app=%s",
                _format_address(sender_address),
                _format_address(app_address),
            )
            return 0
        return _from_db_int(row["nonce"])

    def update_espresso_nonce(self, sender_address: Address, app_address: Address) -> None:
        """Increment the sender's nonce for an application."""
        next_nonce = self.get_espresso_nonce(sender_address, app_address) + 1
        try:
            self._conn.execute(
                """
                INSERT INTO espresso_nonce (sender_address, application_address, nonce)
                VALUES (:sender, :address, :nonce)
                ON CONFLICT (sender_address, application_address)
                DO UPDATE SET nonce = :nonce
                """,
                {
                    "sender": _blob(sender_address),
                    "address": _blob(app_address),
                    "nonce": _to_db_int(next_nonce),
                },
            )
        except sqlite3.Error as exc:
            raise UpdateRowError(f"unable to update row: {_db_error_message(exc)}") from exc

    def get_input_index(self, app_address: Address) -> int:
        """Return the next input index for an application; 0 when none is stored."""
        row = self._fetch_one(
            "GetInputIndex QueryRow",
            'SELECT "index" FROM input_index WHERE application_address = :address',
            {"address": _blob(app_address)},
        )
        if row is None:
            logger.debug("GetInputIndex returned no rows app=%s", _format_address(app_address))
            return 0
        return _from_db_int(row["index"])

    def update_input_index(self, app_address: Address) -> None:
        """Increment the input index of an application."""
        logger.debug("Updating input index")
        next_index = self.get_input_index(app_address) + 1
        try:
            self._conn.execute(
                """
                INSERT INTO input_index (application_address, "index")
                VALUES (:address, :index)
                ON CONFLICT (application_address)
                DO UPDATE SET "index" = :index
                """,
                {"address": _blob(app_address), "index": _to_db_int(next_index)},
            )
        except sqlite3.Error as exc:
            raise UpdateRowError(f"unable to update row: {_db_error_message(exc)}") from exc