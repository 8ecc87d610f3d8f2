"""Domain records shared by the repository and the reader services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Optional

HASH_LENGTH = 32
ADDRESS_LENGTH = 20

Address = bytes
Hash = bytes

ZERO_ADDRESS: Address = bytes(ADDRESS_LENGTH)
ZERO_HASH: Hash = bytes(HASH_LENGTH)


class InputCompletionStatus(str, Enum):
    NONE = "NONE"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXCEPTION = "EXCEPTION"
    MACHINE_HALTED = "MACHINE_HALTED"
    OUTPUTS_LIMIT_EXCEEDED = "OUTPUTS_LIMIT_EXCEEDED"
    CYCLE_LIMIT_EXCEEDED = "CYCLE_LIMIT_EXCEEDED"
    TIME_LIMIT_EXCEEDED = "TIME_LIMIT_EXCEEDED"
    PAYLOAD_LENGTH_LIMIT_EXCEEDED = "PAYLOAD_LENGTH_LIMIT_EXCEEDED"


class ApplicationStatus(str, Enum):
    RUNNING = "RUNNING"
    NOT_RUNNING = "NOT RUNNING"


class DefaultBlock(str, Enum):
    LATEST = "LATEST"
    FINALIZED = "FINALIZED"
    PENDING = "PENDING"
    SAFE = "SAFE"


class EpochStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    PROCESSED_ALL_INPUTS = "PROCESSED_ALL_INPUTS"
    CLAIM_COMPUTED = "CLAIM_COMPUTED"
    CLAIM_SUBMITTED = "CLAIM_SUBMITTED"
    CLAIM_ACCEPTED = "CLAIM_ACCEPTED"
    CLAIM_REJECTED = "CLAIM_REJECTED"


def _from_hex(text: str) -> bytes:
    if text[:2] in ("0x", "0X"):
        text = text[2:]
    if len(text) % 2 == 1:
        text = "0" + text
    return hex_to_bytes(text)


def _fit(data: bytes, length: int) -> bytes:
    if len(data) > length:
        return data[-length:]
    return bytes(length - len(data)) + data


def hex_to_bytes(text: str) -> bytes:
    """Decode a plain hexadecimal string (no prefix) into bytes."""
    if len(text) % 2 == 1 or any(c.isspace() for c in text):
        raise ValueError(f"invalid hex string: {text!r}")
    return bytes.fromhex(text)


def hex_to_address(text: str) -> Address:
    """Parse hex into a 20-byte address, left-padding or keeping the last bytes."""
    return _fit(_from_hex(text), ADDRESS_LENGTH)


def hex_to_hash(text: str) -> Hash:
    """Parse hex into a 32-byte hash, left-padding or keeping the last bytes."""
    return _fit(_from_hex(text), HASH_LENGTH)


@dataclass
class NodePersistentConfig:
    default_block: DefaultBlock = DefaultBlock.FINALIZED
    input_box_deployment_block: int = 0
    input_box_address: Address = ZERO_ADDRESS
    chain_id: int = 0


@dataclass
class ExecutionParameters:
    advance_inc_cycles: int = 0
    advance_max_cycles: int = 0
    inspect_inc_cycles: int = 0
    inspect_max_cycles: int = 0
    advance_inc_deadline: timedelta = timedelta(0)
    advance_max_deadline: timedelta = timedelta(0)
    inspect_inc_deadline: timedelta = timedelta(0)
    inspect_max_deadline: timedelta = timedelta(0)
    load_deadline: timedelta = timedelta(0)
    store_deadline: timedelta = timedelta(0)
    fast_deadline: timedelta = timedelta(0)
    max_concurrent_inspects: int = 0


@dataclass
class MachineConfig:
    app_address: Address = ZERO_ADDRESS
    snapshot_path: str = ""
    processed_inputs: int = 0
    execution_parameters: ExecutionParameters = field(default_factory=ExecutionParameters)


@dataclass
class Application:
    id: int = 0
    contract_address: Address = ZERO_ADDRESS
    template_hash: Hash = ZERO_HASH
    template_uri: str = ""
    last_processed_block: int = 0
    last_claim_check_block: int = 0
    last_output_check_block: int = 0
    status: ApplicationStatus = ApplicationStatus.NOT_RUNNING
    iconsensus_address: Address = ZERO_ADDRESS


@dataclass
class Epoch:
    id: int = 0
    index: int = 0
    first_block: int = 0
    last_block: int = 0
    claim_hash: Optional[Hash] = None
    transaction_hash: Optional[Hash] = None
    status: EpochStatus = EpochStatus.OPEN
    app_address: Address = ZERO_ADDRESS


@dataclass
class Input:
    id: int = 0
    index: int = 0
    completion_status: InputCompletionStatus = InputCompletionStatus.NONE
    raw_data: bytes = b""
    block_number: int = 0
    machine_hash: Optional[Hash] = None
    outputs_hash: Optional[Hash] = None
    app_address: Address = ZERO_ADDRESS
    epoch_id: int = 0
    transaction_id: bytes = b""


@dataclass
class Output:
    id: int = 0
    index: int = 0
    raw_data: bytes = b""
    hash: Optional[Hash] = None
    output_hashes_siblings: list[Hash] = field(default_factory=list)
    input_id: int = 0
    transaction_hash: Optional[Hash] = None


@dataclass
class Report:
    id: int = 0
    index: int = 0
    raw_data: bytes = b""
    input_id: int = 0


@dataclass
class Snapshot:
    id: int = 0
    uri: str = ""
    input_id: int = 0
    app_address: Address = ZERO_ADDRESS