"""
Network constants shared by every payments component.

Weights are expressed in weight units (4 weight units = 1 vbyte) so that
legacy and segwit spends can be costed with the same arithmetic:
- legacy bytes count 4 weight units each
- witness bytes count 1 weight unit each
"""

from __future__ import annotations

from paycore.models import AddressType, FeeLevel

# Decimal places of each chain's main denomination
BITCOIN_DECIMAL_PLACES = 8
ETHEREUM_DECIMAL_PLACES = 18
RIPPLE_DECIMAL_PLACES = 6

# Standard P2PKH dust limit in Bitcoin Core
STANDARD_DUST_LIMIT = 546  # satoshis

# Minimum fee most nodes require to relay a transaction
DEFAULT_NETWORK_MIN_RELAY_FEE = 1000  # satoshis

# Lowest fee rate ever used for a leveled estimate (sat/vbyte)
DEFAULT_MIN_TX_FEE_RATE = 1

# Sequence for each input such that RBF is opted into
BITCOIN_SEQUENCE_RBF = 0xFFFFFFFD

# Transaction version and locktime of built transactions
BITCOIN_TX_VERSION = 2
BITCOIN_TX_LOCKTIME = 0

# version (4) + locktime (4) + input/output count varints (1 + 1)
BASE_TX_WEIGHT = 10 * 4

# segwit marker and flag bytes, witness data counts 1 weight unit per byte
SEGWIT_OVERHEAD_WEIGHT = 2

ADDRESS_INPUT_WEIGHTS: dict[AddressType, int] = {
    # outpoint (36) + scriptSig len (1) + scriptSig (107) + sequence (4)
    AddressType.P2PKH: 148 * 4,
    # non-witness part (64 bytes incl. redeem script push) + witness (108)
    AddressType.P2SH_P2WPKH: 108 + (64 * 4),
    # non-witness part (41 bytes) + witness (108)
    AddressType.P2WPKH: 108 + (41 * 4),
}

ADDRESS_OUTPUT_WEIGHTS: dict[AddressType, int] = {
    AddressType.P2PKH: 34 * 4,
    AddressType.P2SH_P2WPKH: 32 * 4,
    AddressType.P2WPKH: 31 * 4,
    AddressType.P2WSH: 43 * 4,
}

SEGWIT_ADDRESS_TYPES = frozenset({AddressType.P2SH_P2WPKH, AddressType.P2WPKH})

# Confirmation targets (blocks) passed to estimatesmartfee for each level
FEE_LEVEL_BLOCK_TARGETS: dict[FeeLevel, int] = {
    FeeLevel.HIGH: 1,
    FeeLevel.MEDIUM: 6,
    FeeLevel.LOW: 24,
}

# Fallback sat/vbyte rates when the node cannot estimate
DEFAULT_SAT_PER_BYTE_LEVELS: dict[FeeLevel, int] = {
    FeeLevel.HIGH: 10,
    FeeLevel.MEDIUM: 5,
    FeeLevel.LOW: 1,
}

# Ethereum gas limits per operation
ETHEREUM_TRANSFER_COST = 21_000
TOKEN_TRANSFER_COST = 65_000

# Multiplier applied to the node gas price for each level
ETHEREUM_FEE_LEVEL_MULTIPLIERS: dict[FeeLevel, str] = {
    FeeLevel.LOW: "1",
    FeeLevel.MEDIUM: "1.25",
    FeeLevel.HIGH: "1.5",
}

ETHEREUM_MIN_CONFIRMATIONS = 5

# Ripple account reserve in XRP, an address below it does not exist on the ledger
RIPPLE_MIN_BALANCE = "20"

# Cushion applied to the open ledger fee for each level
RIPPLE_FEE_LEVEL_CUSHIONS: dict[FeeLevel, str] = {
    FeeLevel.LOW: "1",
    FeeLevel.MEDIUM: "1.2",
    FeeLevel.HIGH: "1.5",
}

RIPPLE_MAX_LEDGER_VERSION_OFFSET = 100

# Ripple engine results starting with this prefix mean the transaction applied
RIPPLE_SUCCESS_RESULT_PREFIX = "tes"

# Blocks before a coinbase output may be spent
COINBASE_MATURITY = 100
