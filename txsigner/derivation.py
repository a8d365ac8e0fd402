"""BIP-32 coordinate helpers."""
from __future__ import annotations

from typing import Sequence

from .models import DerivationPath, Wallet

HARDENED_LEVELS = 3
MAX_INDEX = 2**31 - 1


def assemble_coordinates(path: DerivationPath, wallet: Wallet) -> list[int]:
    """Return ``[purpose, coin_type, account, change, address_index]``.

    The address index belongs to the wallet row, not to the derivation path.
    """
    coordinates = [path.purpose, path.coin_type, path.account, path.change, wallet.address_index]
    for value in coordinates:
        if value < 0 or value > MAX_INDEX:
            raise ValueError(f"derivation coordinate out of range: {value}")
    return coordinates


def format_bip32_path(coordinates: Sequence[int]) -> str:
    """Render coordinates as ``m/44'/60'/0'/0/7`` (purpose, coin type and account hardened)."""
    if len(coordinates) != 5:
        raise ValueError(f"expected 5 derivation coordinates, got {len(coordinates)}")
    parts = [
        f"{value}'" if position < HARDENED_LEVELS else str(value)
        for position, value in enumerate(coordinates)
    ]
    return "m/" + "/".join(parts)
