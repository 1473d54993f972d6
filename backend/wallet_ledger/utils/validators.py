"""
Validators — rule-based checks for M-Pesa identifiers, phones and wallet PINs.
"""
import re


def normalize_code(code: str | None) -> str:
    """Receipt / promo codes are matched uppercased and trimmed."""
    return (code or "").strip().upper()


def validate_pin(pin: str | None) -> bool:
    """Wallet PIN: exactly 4 digits."""
    if not pin:
        return False
    return bool(re.match(r"^\d{4}$", pin))


def normalize_phone(phone: str | None) -> str:
    """Kenyan mobile numbers to 2547XXXXXXXX / 2541XXXXXXXX; anything else is only stripped."""
    if not phone:
        return ""
    cleaned = re.sub(r"[\s\-()]", "", phone.strip()).lstrip("+")
    if re.match(r"^0[17]\d{8}$", cleaned):
        return "254" + cleaned[1:]
    if re.match(r"^[17]\d{8}$", cleaned):
        return "254" + cleaned
    return cleaned


def missing_fields(payload: dict, required: list[str]) -> list[str]:
    """Names of required keys whose value is absent or blank."""
    missing = []
    for name in required:
        value = payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing
