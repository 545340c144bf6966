import re
from typing import Tuple
from bech32 import bech32_decode, bech32_encode, convertbits
from secp256k1 import PrivateKey

from app.exceptions import ConfigurationError

_HEX_KEY = re.compile(r'^[0-9a-fA-F]{64}$')


def bech32_to_hex(value: str, expected_hrp: str) -> str:
    """Convert a bech32 nostr key (npub/nsec) to hex"""
    hrp, data = bech32_decode(value)
    if hrp != expected_hrp or data is None:
        raise ValueError(f"Invalid {expected_hrp} format")

    # Convert from 5-bit to 8-bit
    decoded = convertbits(data, 5, 8, False)
    if decoded is None or len(decoded) != 32:
        raise ValueError(f"Invalid {expected_hrp} data")

    return bytes(decoded).hex()


def hex_to_bech32(key_hex: str, hrp: str) -> str:
    """Convert a 32-byte hex key to bech32 with the given prefix"""
    if not _HEX_KEY.match(key_hex):
        raise ValueError("Key must be 64 hex characters")

    data = convertbits(bytes.fromhex(key_hex), 8, 5)
    if data is None:
        raise ValueError("Failed to convert key")

    encoded = bech32_encode(hrp, data)
    if encoded is None:
        raise ValueError(f"Failed to encode {hrp}")
    return encoded


def pubkey_to_npub(pubkey_hex: str) -> str:
    return hex_to_bech32(pubkey_hex, 'npub')


def load_private_key(secret: str) -> Tuple[PrivateKey, str]:
    """Load a signing key from hex or nsec, returning the key and its x-only pubkey hex"""
    secret = (secret or "").strip()
    if not secret:
        raise ConfigurationError("ZAPPER_NOSTR_NSEC is not set")

    try:
        if secret.startswith('nsec1'):
            secret_hex = bech32_to_hex(secret, 'nsec')
        elif _HEX_KEY.match(secret):
            secret_hex = secret
        else:
            raise ValueError("expected 64 hex characters or an nsec")

        private_key = PrivateKey(bytes.fromhex(secret_hex))
    except Exception as e:
        raise ConfigurationError(f"Invalid signing key: {str(e)}")

    public_key_hex = private_key.pubkey.serialize(compressed=True)[1:].hex()
    return private_key, public_key_hex
