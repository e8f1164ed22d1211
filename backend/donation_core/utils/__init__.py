from donation_core.utils.hashing import generate_hash, generate_chain_hash, verification_code
from donation_core.utils.validators import validate_pan, validate_email, normalize_pan, sanitize_name
from donation_core.utils.money import to_paise, to_rupees, format_inr, amount_in_words, round_half_up_rupees
from donation_core.utils.dates import add_period, financial_year, financial_year_short, utcnow

__all__ = [
    "generate_hash", "generate_chain_hash", "verification_code",
    "validate_pan", "validate_email", "normalize_pan", "sanitize_name",
    "to_paise", "to_rupees", "format_inr", "amount_in_words", "round_half_up_rupees",
    "add_period", "financial_year", "financial_year_short", "utcnow",
]
