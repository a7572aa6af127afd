# utils/num.py
from typing import Any


def safe_float(x: Any) -> float:
    """Safe float from str/float/int; anything unparsable is 0.0."""
    if x is None:
        return 0.0
    if isinstance(x, (int, float)):
        return float(x)
    s = str(x).strip()
    if not s:
        return 0.0
    try:
        return float(s)
    except ValueError:
        return 0.0
