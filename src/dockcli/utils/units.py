"""Human-readable size parsing."""

import re

_SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([kKmMgGtTpP])?[iI]?[bB]?$")
_MULTIPLIERS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3, "t": 1024**4, "p": 1024**5}


def ram_in_bytes(size: str) -> int:
    """Parse a binary size such as "512m" or "1.5GiB" into bytes.

    Raises:
        ValueError: If the size is not understood
    """
    match = _SIZE_PATTERN.match(size.strip())
    if match is None:
        raise ValueError(f"invalid size: '{size}'")
    number, unit = match.groups()
    return int(float(number) * _MULTIPLIERS[(unit or "").lower()])
