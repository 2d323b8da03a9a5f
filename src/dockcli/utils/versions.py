"""API version comparison."""


def _parts(version: str) -> list[int]:
    parts = []
    for piece in version.split("."):
        try:
            parts.append(int(piece))
        except ValueError:
            parts.append(0)
    return parts


def compare(v1: str, v2: str) -> int:
    """Compare dotted versions, returning -1, 0 or 1."""
    a, b = _parts(v1), _parts(v2)
    length = max(len(a), len(b))
    a += [0] * (length - len(a))
    b += [0] * (length - len(b))
    return (a > b) - (a < b)


def greater_than_or_equal_to(v1: str, v2: str) -> bool:
    return compare(v1, v2) >= 0
