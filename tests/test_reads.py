import sqlite3

import pytest

from espresso_reader.model import (
    Application,
    ApplicationStatus,
    DefaultBlock,
    Epoch,
    EpochStatus,
    Input,
    InputCompletionStatus,
    NodePersistentConfig,
    Output,
    Report,
    Snapshot,
    hex_to_address,
    hex_to_bytes,
    hex_to_hash,
)
from espresso_reader.reads import ReadRepository
from espresso_reader.schema import Schema
from espresso_reader.writes import RepositoryError

APP = hex_to_address("deadbeef")
APP2 = hex_to_address("feadbeef")
GENERIC = hex_to_hash("deadbeef")
RAW = hex_to_bytes("deadbeef")
BIG_BLOCK = (2**64 - 1) // 2 + 1


def _open(path):
    with Schema(str(path)) as schema:
        schema.upgrade()
    return ReadRepository(sqlite3.connect(str(path)))


@pytest.fixture
def empty(tmp_path):
    repo = _open(tmp_path / "empty.db")
    yield repo
    repo.close()


@pytest.fixture
def repo(tmp_path):
    db = _open(tmp_path / "rollups.db")
    db.insert_node_config(
        NodePersistentConfig(
            default_block=DefaultBlock.FINALIZED,
            input_box_deployment_block=1,
            input_box_address=hex_to_address("deadbeef"),
            chain_id=1,
        )
    )
    for address, status in ((APP, ApplicationStatus.RUNNING), (APP2, ApplicationStatus.NOT_RUNNING)):
        db.insert_application(
            Application(
                contract_address=address,
                iconsensus_address=hex_to_address("ffffff"),
                template_hash=hex_to_hash("deadbeef"),
                template_uri="path/to/template/uri/0",
                last_processed_block=1,
                status=status,
            )
        )
    for index, first, last, status in (
        (0, 0, 99, EpochStatus.OPEN),
        (1, 100, 199, EpochStatus.OPEN),
        (2, 200, 299, EpochStatus.CLAIM_SUBMITTED),
    ):
        db.insert_epoch(
            Epoch(index=index, first_block=first, last_block=last, app_address=APP, status=status)
        )
    for index, status, block, epoch_id in (
        (1, InputCompletionStatus.ACCEPTED, 1, 1),
        (2, InputCompletionStatus.NONE, 3, 1),
        (3, InputCompletionStatus.ACCEPTED, BIG_BLOCK, 2),
    ):
        db.insert_input(
            Input(
                index=index,
                completion_status=status,
                raw_data=RAW,
                block_number=block,
                machine_hash=GENERIC,
                outputs_hash=GENERIC,
                app_address=APP,
                epoch_id=epoch_id,
            )
        )
    for index, input_id in ((1, 1), (2, 1), (3, 2), (4, 3)):
        db.insert_output(
            Output(index=index, input_id=input_id, raw_data=RAW, output_hashes_siblings=[GENERIC])
        )
    db.insert_report(Report(index=1, input_id=1, raw_data=RAW))
    snapshot_id = db.insert_snapshot(Snapshot(input_id=1, app_address=APP, uri="/some/path"))
    assert snapshot_id == 1
    yield db
    db.close()


def test_application_exists(repo):
    expected = Application(
        id=1,
        contract_address=APP,
        iconsensus_address=hex_to_address("ffffff"),
        template_hash=hex_to_hash("deadbeef"),
        template_uri="path/to/template/uri/0",
        last_processed_block=1,
        status=ApplicationStatus.RUNNING,
    )
    assert repo.get_application(APP) == expected


def test_application_doesnt_exist(repo):
    assert repo.get_application(hex_to_address("deadbeefaaa")) is None


def test_node_config(repo):
    assert repo.get_node_config() == NodePersistentConfig(
        default_block=DefaultBlock.FINALIZED,
        input_box_deployment_block=1,
        input_box_address=hex_to_address("deadbeef"),
        chain_id=1,
    )


def test_node_config_missing(empty):
    assert empty.get_node_config() is None


def test_input_exists(repo):
    expected = Input(
        id=1,
        index=1,
        completion_status=InputCompletionStatus.ACCEPTED,
        raw_data=RAW,
        block_number=1,
        machine_hash=GENERIC,
        outputs_hash=GENERIC,
        app_address=APP,
        epoch_id=1,
    )
    assert repo.get_input(APP, 1) == expected


def test_input_doesnt_exist(repo):
    assert repo.get_input(APP, 10) is None


def test_input_large_block_number_round_trips(repo):
    assert repo.get_input(APP, 3).block_number == BIG_BLOCK


def test_get_inputs_ordered(repo):
    inputs = repo.get_inputs(APP)
    assert [i.index for i in inputs] == [1, 2, 3]
    assert [i.epoch_id for i in inputs] == [1, 1, 2]
    assert [i.completion_status for i in inputs] == [
        InputCompletionStatus.ACCEPTED,
        InputCompletionStatus.NONE,
        InputCompletionStatus.ACCEPTED,
    ]


def test_get_inputs_other_app_empty(repo):
    assert repo.get_inputs(APP2) == []


def test_output_exists(repo):
    expected = Output(id=1, index=1, input_id=1, raw_data=RAW, output_hashes_siblings=[GENERIC])
    assert repo.get_output(APP, 1) == expected


def test_output_doesnt_exist(repo):
    assert repo.get_output(APP, 10) is None


def test_get_outputs(repo):
    outputs = repo.get_outputs(APP)
    assert [o.index for o in outputs] == [1, 2, 3, 4]
    assert [o.input_id for o in outputs] == [1, 1, 2, 3]


def test_get_outputs_by_input_index(repo):
    outputs = repo.get_outputs_by_input_index(APP, 1)
    assert [o.index for o in outputs] == [1, 2]
    assert repo.get_outputs_by_input_index(APP, 9) == []


def test_report_exists(repo):
    assert repo.get_report(APP, 1) == Report(id=1, index=1, input_id=1, raw_data=RAW)


def test_report_doesnt_exist(repo):
    assert repo.get_report(APP, 10) is None


def test_get_reports(repo):
    assert repo.get_reports(APP) == [Report(id=1, index=1, input_id=1, raw_data=RAW)]
    assert repo.get_reports_by_input_index(APP, 1) == [Report(id=1, index=1, input_id=1, raw_data=RAW)]
    assert repo.get_reports_by_input_index(APP, 2) == []


def test_epoch_exists(repo):
    expected = Epoch(
        id=1, status=EpochStatus.OPEN, index=0, first_block=0, last_block=99, app_address=APP
    )
    assert repo.get_epoch(0, APP) == expected


def test_epoch_doesnt_exist(repo):
    assert repo.get_epoch(3, APP) is None


def test_get_epochs(repo):
    epochs = repo.get_epochs(APP)
    assert [e.index for e in epochs] == [0, 1, 2]
    assert epochs[2].status == EpochStatus.CLAIM_SUBMITTED
    assert epochs[1].first_block == 100


def test_get_snapshot(repo):
    expected = Snapshot(id=1, input_id=1, app_address=APP, uri="/some/path")
    assert repo.get_snapshot(1, APP) == expected


def test_get_snapshot_missing(repo):
    assert repo.get_snapshot(2, APP) is None


def test_espresso_nonce_counts_per_pair(repo):
    sender = hex_to_address("abcd")
    assert repo.get_espresso_nonce(sender, APP) == 0
    repo.update_espresso_nonce(sender, APP)
    repo.update_espresso_nonce(sender, APP)
    assert repo.get_espresso_nonce(sender, APP) == 2
    assert repo.get_espresso_nonce(sender, APP2) == 0


def test_input_index_counts_per_app(repo):
    assert repo.get_input_index(APP) == 0
    repo.update_input_index(APP)
    assert repo.get_input_index(APP) == 1
    repo.update_input_index(APP)
    assert repo.get_input_index(APP) == 2
    assert repo.get_input_index(APP2) == 0


def test_closed_repository_raises(repo):
    repo.close()
    with pytest.raises(RepositoryError):
        repo.get_application(APP)