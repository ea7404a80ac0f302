"""
Simulated Ethereum accounts.

Scenarios and the HTTP API identify stakers by Ethereum address.  A
``SimAccount`` wraps a secp256k1 key-pair and derives its address the
way the EVM does:

    address = keccak256(uncompressed_pubkey[1:])[-20:]

Addresses are rendered with EIP-55 mixed-case checksums.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass

from Crypto.Hash import keccak
from ecdsa import SECP256k1, SigningKey

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def to_checksum_address(address: str) -> str:
    """EIP-55 checksum encoding of a 20-byte hex address."""
    if not _HEX_ADDRESS.match(address):
        raise ValueError(f"Not a hex address: {address!r}")
    lower = address[2:].lower()
    digest = keccak256(lower.encode("ascii")).hex()
    return "0x" + "".join(
        c.upper() if int(digest[i], 16) >= 8 else c
        for i, c in enumerate(lower)
    )


def is_valid_address(address: str) -> bool:
    """True for well-formed addresses whose mixed case, if any, checks out."""
    if not isinstance(address, str) or not _HEX_ADDRESS.match(address):
        return False
    body = address[2:]
    if body == body.lower() or body == body.upper():
        return True
    return to_checksum_address(address) == address


def normalize_address(address: str) -> str:
    """Validate *address* and return its checksummed form."""
    if not is_valid_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return to_checksum_address(address)


@dataclass(frozen=True)
class SimAccount:
    """A secp256k1 key-pair standing in for an externally owned account."""
    private_key: bytes
    public_key: bytes  # 64 bytes, x || y

    @property
    def address(self) -> str:
        return to_checksum_address("0x" + keccak256(self.public_key)[-20:].hex())

    @classmethod
    def from_private_key(cls, private_key: bytes) -> SimAccount:
        sk = SigningKey.from_string(private_key, curve=SECP256k1)
        return cls(private_key, sk.get_verifying_key().to_string())

    @classmethod
    def from_seed(cls, seed: str | bytes) -> SimAccount:
        """Deterministic account for repeatable scenarios."""
        if isinstance(seed, str):
            seed = seed.encode("utf-8")
        k = int.from_bytes(hashlib.sha256(seed).digest(), "big") % (SECP256k1.order - 1) + 1
        return cls.from_private_key(k.to_bytes(32, "big"))

    @classmethod
    def create(cls) -> SimAccount:
        return cls.from_seed(os.urandom(32))
