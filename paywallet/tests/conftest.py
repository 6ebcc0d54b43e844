"""
Test configuration for paywallet tests.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from paywallet.wallet.bip32 import HDKey, mnemonic_to_seed


@pytest.fixture
def sample_mnemonic() -> str:
    """Test mnemonic (not for production use!)."""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def master_key(sample_mnemonic: str) -> HDKey:
    return HDKey.from_seed(mnemonic_to_seed(sample_mnemonic))


@pytest.fixture
def rpc_response() -> Callable[..., httpx.Response]:
    """Factory for httpx responses as returned by a JSON-RPC node."""

    def make(body: Any, status_code: int = 200) -> httpx.Response:
        return httpx.Response(
            status_code, json=body, request=httpx.Request("POST", "http://node.invalid")
        )

    return make
