from wallet_ledger.utils.hashing import generate_hash, generate_chain_hash, hash_pin, verify_pin_hash
from wallet_ledger.utils.validators import normalize_code, normalize_phone, validate_pin, missing_fields
from wallet_ledger.utils.money import to_money, share_of
from wallet_ledger.utils.codes import generate_redeem_code, generate_reference

__all__ = [
    "generate_hash", "generate_chain_hash", "hash_pin", "verify_pin_hash",
    "normalize_code", "normalize_phone", "validate_pin", "missing_fields",
    "to_money", "share_of",
    "generate_redeem_code", "generate_reference",
]
