"""
Code generators — redeem codes for enrollments, reference numbers for withdrawals.
"""
import secrets
import time

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def to_base36(number: int) -> str:
    if number < 0:
        raise ValueError("base36 only encodes non-negative integers")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_redeem_code() -> str:
    """``R-######`` with six random digits (100000–999999)."""
    return f"R-{100000 + secrets.randbelow(900000)}"


def generate_reference(now_ms: int | None = None) -> str:
    """``WD-<base36 ms timestamp>-<6 random base36 chars>``."""
    ts = to_base36(now_ms if now_ms is not None else int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"WD-{ts}-{suffix}"
