"""
Value coercion for master payloads sent by the Tally client.

The client serialises Tally values loosely: numbers arrive as strings with
separators, booleans as Yes/No, dates in several formats. These helpers turn
them into plain Python values before reconciliation.
"""
from __future__ import annotations
import re
from datetime import datetime, date
from typing import Optional, Any
from loguru import logger


def _is_blank(s: Any) -> bool:
    return s is None or str(s).strip().lower() in ("", "null", "none")


def parse_text(s: Any) -> Optional[str]:
    """Strip a text value, mapping blanks to None."""
    if _is_blank(s):
        return None
    return str(s).strip()


def parse_tally_date(s: Any) -> Optional[date]:
    """
    Parse Tally date string to Python date.

    Tally uses multiple date formats:
    - YYYYMMDD (most common)
    - YYYY-MM-DD
    - DD-MMM-YYYY (e.g., "01-Apr-2024")

    Returns None for empty or unparseable strings.
    """
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    if _is_blank(s):
        return None

    s = str(s).strip()
    formats = [
        "%Y%m%d",      # 20240401
        "%Y-%m-%d",    # 2024-04-01
        "%d-%b-%Y",    # 01-Apr-2024
        "%d/%m/%Y",    # 01/04/2024
        "%d-%m-%Y",    # 01-04-2024
    ]

    for fmt in formats:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    logger.warning(f"Could not parse date: {s}")
    return None


def parse_float(s: Any, default: Optional[float] = 0.0) -> Optional[float]:
    """
    Parse Tally numeric string to float.

    Handles:
    - Comma separators (1,234.56)
    - Parentheses for negatives ((1234.56))
    - Currency symbols
    - Dr/Cr suffixes (Cr is negative)
    """
    if isinstance(s, bool):
        return float(s)
    if isinstance(s, (int, float)):
        return float(s)
    if _is_blank(s):
        return default

    s = str(s).strip()

    is_negative = s.startswith("(") and s.endswith(")")
    if is_negative:
        s = s[1:-1]

    if s.endswith("Dr"):
        s = s[:-2]
    elif s.endswith("Cr"):
        s = s[:-2]
        is_negative = not is_negative

    s = re.sub(r"[,₹$€£¥\s]", "", s)

    try:
        val = float(s)
        return -val if is_negative else val
    except ValueError:
        logger.warning(f"Could not parse float: {s}")
        return default


def parse_int(s: Any, default: Optional[int] = 0) -> Optional[int]:
    """Parse Tally integer string."""
    if isinstance(s, bool):
        return int(s)
    if isinstance(s, int):
        return s
    if _is_blank(s):
        return default

    s = str(s).strip().replace(",", "").replace(" ", "")
    try:
        return int(float(s))  # Handle "123.0" style
    except ValueError:
        logger.warning(f"Could not parse int: {s}")
        return default


def parse_bool(s: Any, default: bool = False) -> bool:
    """
    Parse Tally boolean string.

    Tally uses various representations:
    - Yes/No
    - True/False
    - 1/0
    """
    if s is None:
        return default
    if isinstance(s, bool):
        return s

    s = str(s).strip().lower()
    if s in ("yes", "true", "1", "y"):
        return True
    elif s in ("no", "false", "0", "n", ""):
        return False

    return default


def parse_id(value: Any) -> Optional[int]:
    """
    Parse a master id or alter id.

    Tally sometimes formats ids with spaces or separators ("1 234").
    Returns None when the value is missing or not a whole number, so the
    caller can reject the record instead of keying it on a made-up id.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if _is_blank(value):
        return None

    cleaned = str(value).strip().replace(" ", "").replace(",", "")
    try:
        return int(cleaned)
    except ValueError:
        try:
            as_float = float(cleaned)
        except ValueError:
            return None
        return int(as_float) if as_float.is_integer() else None


def parse_tenant(value: Any) -> Optional[str]:
    """Normalise a tenant (company) id to a string key."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return parse_text(value)
