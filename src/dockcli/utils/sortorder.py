"""Natural ("human") string ordering."""

import re

_CHUNK = re.compile(r"(\d+)")


def natural_key(value: str) -> list[tuple[int, int, str]]:
    """Sort key comparing digit runs as integers and other text lexically.

    Examples:
        sorted(["target10-foo", "target1-foo", "target2-foo"], key=natural_key)
        # ["target1-foo", "target2-foo", "target10-foo"]
    """
    key = []
    for chunk in _CHUNK.split(value):
        if not chunk:
            continue
        if chunk.isdigit():
            key.append((0, int(chunk), chunk))
        else:
            key.append((1, 0, chunk))
    return key


def natural_less(a: str, b: str) -> bool:
    return natural_key(a) < natural_key(b)
