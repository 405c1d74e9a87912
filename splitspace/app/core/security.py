"""
PIN hashing utilities.

PBKDF2-HMAC-SHA256 over PIN + per-user salt. The PIN itself is never stored;
only the salt (generated once at PIN setup) and the derived hex digest.
"""

import secrets
from typing import Optional

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from splitspace.app.core.config import settings
from splitspace.app.core.exceptions import LedgerValidationError

PIN_HASH_BYTES = 32
PIN_SALT_BYTES = 16


def generate_pin_salt() -> str:
    """Create a random per-user salt (hex)."""
    return secrets.token_hex(PIN_SALT_BYTES)


def validate_pin_format(pin: Optional[str]) -> str:
    """
    Check a PIN is all digits and within the configured length.

    Raises:
        LedgerValidationError: if the PIN is empty or malformed
    """
    if not pin:
        raise LedgerValidationError("PIN is required")
    if not pin.isdigit():
        raise LedgerValidationError("PIN must contain digits only")
    if not settings.pin_min_length <= len(pin) <= settings.pin_max_length:
        raise LedgerValidationError(
            f"PIN must be {settings.pin_min_length}-{settings.pin_max_length} digits"
        )
    return pin


def _pin_kdf(salt: str, iterations: Optional[int] = None) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=PIN_HASH_BYTES,
        salt=salt.encode("utf-8"),
        iterations=iterations or settings.pin_kdf_iterations,
    )


def derive_pin_hash(pin: str, salt: str, iterations: Optional[int] = None) -> str:
    """
    Derive the PIN hash.

    Args:
        pin: Plain PIN as entered by the user
        salt: The user's stored salt
        iterations: Override of the configured work factor

    Returns:
        64-character hex digest

    Raises:
        LedgerValidationError: on empty PIN or missing salt
    """
    if not pin:
        raise LedgerValidationError("PIN is required")
    if not salt:
        raise LedgerValidationError("PIN salt is missing")

    return _pin_kdf(salt, iterations).derive(pin.encode("utf-8")).hex()


def verify_pin_hash(pin: str, salt: str, expected_hash: str) -> bool:
    """Recompute and compare in constant time. Never raises on mismatch."""
    if not expected_hash:
        raise LedgerValidationError("No PIN hash to verify against")
    if not pin:
        raise LedgerValidationError("PIN is required")
    if not salt:
        raise LedgerValidationError("PIN salt is missing")

    try:
        expected = bytes.fromhex(expected_hash)
    except ValueError:
        return False
    try:
        _pin_kdf(salt).verify(pin.encode("utf-8"), expected)
    except InvalidKey:
        return False
    return True
