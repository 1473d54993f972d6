"""
Cryptographic Hashing Utilities — audit-chain hashing and wallet PIN protection.
"""
import hashlib
import hmac
import json
import secrets


def generate_hash(data: dict) -> str:
    """Generate a SHA-256 hash of a dictionary (deterministic, sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def generate_chain_hash(current_data: dict, previous_hash: str = "") -> str:
    """Generate a chain hash: SHA-256(previous_hash + current_payload).
    Creates a tamper-evident linked chain for the audit trail.
    """
    current_hash = generate_hash(current_data)
    chain_input = f"{previous_hash}{current_hash}".encode("utf-8")
    return hashlib.sha256(chain_input).hexdigest()


def hash_pin(pin: str, iterations: int, salt: str | None = None) -> str:
    """PBKDF2-SHA256 a wallet PIN.

    Returns:
        ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``
    """
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", pin.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def verify_pin_hash(pin: str, stored: str) -> bool:
    """Constant-time check of a PIN against ``hash_pin`` output."""
    try:
        algorithm, iterations, salt, _ = stored.split("$")
    except (AttributeError, ValueError):
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    candidate = hash_pin(pin, int(iterations), salt)
    return hmac.compare_digest(candidate, stored)
