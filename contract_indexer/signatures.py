from typing import Dict, Mapping, Optional, Protocol

UNKNOWN = "Unknown"

# --- event topics (keccak256 of the canonical signature) ---
TRANSFER_TOPIC0        = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
APPROVAL_TOPIC0        = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"
APPROVAL_FOR_ALL_TOPIC0 = "0x17307eab39ab6107e8899845ad3d59bd9653f200f220920489ca2b5937696c31"
TRANSFER_SINGLE_TOPIC0 = "0xc3d58168c5ae7397731d063d5bbf3d657854427343f4c083240f7aacaa2d0f62"
TRANSFER_BATCH_TOPIC0  = "0x4a39dc06d4c0dbc64b70af90fd698a233a518aa5d07e595d983b8c0526c8f7fb"
OWNERSHIP_TRANSFERRED_TOPIC0 = "0x8be0079c531659141344cd1fd0a4f28419497f9722a3daafe3b4186f6b6457e0"

KNOWN_EVENTS: Dict[str, str] = {
    TRANSFER_TOPIC0:              "Transfer",
    APPROVAL_TOPIC0:              "Approval",
    APPROVAL_FOR_ALL_TOPIC0:      "ApprovalForAll",
    TRANSFER_SINGLE_TOPIC0:       "TransferSingle",
    TRANSFER_BATCH_TOPIC0:        "TransferBatch",
    OWNERSHIP_TRANSFERRED_TOPIC0: "OwnershipTransferred",
}

# --- 4-byte function selectors ---
KNOWN_FUNCTIONS: Dict[str, str] = {
    "0xa9059cbb": "transfer",
    "0x23b872dd": "transferFrom",
    "0x095ea7b3": "approve",
    "0x70a08231": "balanceOf",
    "0x42842e0e": "safeTransferFrom",
    "0xa22cb465": "setApprovalForAll",
    "0x40c10f19": "mint",
    "0x42966c68": "burn",
    "0xf2fde38b": "transferOwnership",
}


class SignatureResolver(Protocol):
    """Maps event topic0 / function selectors to names. Misses return ``UNKNOWN``."""

    def event_name(self, topic0: Optional[str]) -> str: ...

    def function_name(self, selector: Optional[str]) -> str: ...


class StaticSignatureResolver:
    def __init__(self, events: Optional[Mapping[str, str]] = None,
                 functions: Optional[Mapping[str, str]] = None):
        self.events = {k.lower(): v for k, v in (events or KNOWN_EVENTS).items()}
        self.functions = {k.lower(): v for k, v in (functions or KNOWN_FUNCTIONS).items()}

    def event_name(self, topic0: Optional[str]) -> str:
        if not topic0:
            return UNKNOWN
        return self.events.get(topic0.lower(), UNKNOWN)

    def function_name(self, selector: Optional[str]) -> str:
        if not selector:
            return UNKNOWN
        return self.functions.get(selector.lower(), UNKNOWN)

    def register_event(self, topic0: str, name: str):
        self.events[topic0.lower()] = name

    def register_function(self, selector: str, name: str):
        self.functions[selector.lower()] = name


def function_selector(input_data: Optional[str]) -> Optional[str]:
    """``0x`` + first 4 bytes of calldata, or None when there is no calldata."""
    if not input_data or input_data in ("0x", "0X"):
        return None
    h = input_data[2:] if input_data.startswith(("0x", "0X")) else input_data
    # short calldata keeps whatever prefix it has
    return "0x" + h[:8].lower()
