import random
import string
import time
from typing import Optional


def to_minor_units(amount: float) -> int:
    """
    Convert a major-unit amount (e.g. naira) to the minor unit the payment
    provider expects (e.g. kobo).

    Rounds to the nearest minor unit, so 12.345 becomes 1235 rather than
    carrying float noise into the provider's integer field.
    """
    return int(round(float(amount) * 100))


def format_price(amount: float, symbol: str = "₦") -> str:
    return f"{symbol}{amount:,.2f}"


def generate_reference(prefix: str, now_ms: Optional[int] = None) -> str:
    """
    Build a payment reference of the form PREFIX-<epoch millis>-<6 random chars>.

    Unique enough for one browser profile; collisions are possible but not expected.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{prefix}-{now_ms}-{suffix}"


def file_extension(content_type: str) -> str:
    """'image/png' -> 'png'; 'image/svg+xml' -> 'svg'."""
    subtype = content_type.split("/", 1)[-1]
    return subtype.split("+", 1)[0].split(";", 1)[0].strip().lower()
