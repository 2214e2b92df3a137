from __future__ import annotations

WEI_PER_ETHER = 10**18


def format_ether(wei: int) -> str:
    """Exact decimal rendering of an 18-decimal amount, trailing zeros dropped."""
    sign = "-" if wei < 0 else ""
    whole, fraction = divmod(abs(int(wei)), WEI_PER_ETHER)
    if fraction == 0:
        return f"{sign}{whole}"
    digits = f"{fraction:018d}".rstrip("0")
    return f"{sign}{whole}.{digits}"
