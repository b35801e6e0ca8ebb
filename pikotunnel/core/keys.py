# pikotunnel/core/keys.py
"""
WireGuard key generation (Curve25519, Base64 encoded)
"""

import base64
from typing import Tuple

from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives import serialization


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _public_b64(priv: x25519.X25519PrivateKey) -> str:
    return _b64(priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    ))


def generate_keypair() -> Tuple[str, str]:
    """Return (private_key, public_key) in the format `wg genkey | wg pubkey` produces"""
    priv = x25519.X25519PrivateKey.generate()
    private_key = _b64(priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    return private_key, _public_b64(priv)


def public_key_from_private(private_key: str) -> str:
    """Equivalent of `wg pubkey`"""
    raw = base64.b64decode(private_key.strip())
    return _public_b64(x25519.X25519PrivateKey.from_private_bytes(raw))
