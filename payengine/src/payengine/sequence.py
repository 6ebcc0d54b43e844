"""
Next sequence number (nonce) for account-model chains.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from loguru import logger

NonceSource = Callable[[str], Awaitable[int]]


class SequenceTracker:
    """
    Resolves the sequence number of the next transaction from an address.

    No reservation is held between build and broadcast: concurrent builds for
    one address will receive the same number.
    """

    def __init__(self, nonce_source: NonceSource):
        self.nonce_source = nonce_source

    async def next_sequence(self, address: str, override: int | None = None) -> int:
        if override is not None:
            # caller supplied, passed through unchecked
            logger.debug(f"Using caller sequence {override} for {address}")
            return override
        sequence = await self.nonce_source(address)
        logger.debug(f"Next sequence for {address}: {sequence}")
        return sequence
