"""
Version constraint evaluation (pure).

Matches concrete component versions against the constraint strings
written in component descriptors. No I/O.

Syntax::

    *  or empty        any version
    1.2.3              exactly 1.2.3
    1.2  /  1.2.x      any 1.2.* release
    1    /  1.x        any 1.* release
    ==1.2.3  !=1.2.3   equality / inequality
    >=1.2  >1.2  <=2  <2
    ^1.2.3             >=1.2.3, <2.0.0   (^0.2.3 → <0.3.0)
    ~1.2.3             >=1.2.3, <1.3.0   (~1 → <2.0.0)
    >=1.0, <2.0        comma-separated conjunction
"""

from __future__ import annotations

import re

Version = tuple[int, int, int]

_COMPARATOR_RE = re.compile(r"^(==|!=|>=|<=|>|<|\^|~|=)?\s*v?([0-9xX*]+(?:\.[0-9xX*]+){0,2})$")


def parse_version(text: str) -> Version:
    """Parse ``MAJOR[.MINOR[.PATCH]]`` (optional leading ``v``) into a tuple.

    Raises:
        ValueError: If the text is not a version.
    """
    parts = str(text).strip().lstrip("vV").split(".")
    if not 1 <= len(parts) <= 3:
        raise ValueError(f"not a version: {text!r}")
    nums = [int(p) for p in parts]
    while len(nums) < 3:
        nums.append(0)
    return nums[0], nums[1], nums[2]


def format_version(version: Version) -> str:
    return ".".join(str(p) for p in version)


def _bump(parts: list[int], index: int) -> Version:
    bumped = parts[: index + 1]
    bumped[index] += 1
    while len(bumped) < 3:
        bumped.append(0)
    return bumped[0], bumped[1], bumped[2]


def _expand(op: str, raw: str) -> list[tuple[str, Version]]:
    """Turn one comparator into primitive (op, version) bounds."""
    fields = raw.split(".")
    wildcard = [f in ("x", "X", "*") for f in fields]
    if any(wildcard):
        if op not in ("", "="):
            raise ValueError(f"wildcard not allowed with '{op}': {raw}")
        fields = fields[: wildcard.index(True)]
        if not fields:
            return []
    given = [int(f) for f in fields]
    padded = parse_version(".".join(fields))

    if op in ("", "="):
        if len(given) == 3:
            return [("==", padded)]
        # Partial version: prefix match
        return [(">=", padded), ("<", _bump(given, len(given) - 1))]
    if op == "^":
        # First non-zero field is the compatibility boundary
        index = 0
        while index < len(given) - 1 and given[index] == 0:
            index += 1
        return [(">=", padded), ("<", _bump(given, index))]
    if op == "~":
        index = 1 if len(given) >= 2 else 0
        return [(">=", padded), ("<", _bump(given, index))]
    return [(op, padded)]


def parse_constraint(text: str) -> list[tuple[str, Version]]:
    """Parse a constraint string into primitive bounds (all must hold).

    Raises:
        ValueError: If the constraint is malformed.
    """
    text = (text or "").strip()
    if text in ("", "*", "latest"):
        return []

    bounds: list[tuple[str, Version]] = []
    for chunk in text.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        match = _COMPARATOR_RE.match(chunk)
        if not match:
            raise ValueError(f"invalid version constraint: {chunk!r}")
        op, raw = match.group(1) or "", match.group(2)
        bounds.extend(_expand(op, raw))
    return bounds


def _holds(version: Version, op: str, ref: Version) -> bool:
    if op == "==":
        return version == ref
    if op == "!=":
        return version != ref
    if op == ">=":
        return version >= ref
    if op == ">":
        return version > ref
    if op == "<=":
        return version <= ref
    if op == "<":
        return version < ref
    raise ValueError(f"unknown operator {op!r}")


def satisfies(version: str | Version, constraint: str) -> bool:
    """Whether ``version`` meets ``constraint``."""
    parsed = version if isinstance(version, tuple) else parse_version(version)
    return all(_holds(parsed, op, ref) for op, ref in parse_constraint(constraint))


def satisfies_all(version: str | Version, constraints: list[str]) -> bool:
    """Whether ``version`` meets every constraint in the list."""
    return all(satisfies(version, c) for c in constraints)


def is_valid_constraint(text: str) -> bool:
    try:
        parse_constraint(text)
    except ValueError:
        return False
    return True


def check_version_constraint(selected_version: str, constraint: str) -> dict:
    """Validate a selected version against a constraint, with a message.

    Returns:
        ``{"valid": True}`` or ``{"valid": False, "message": "..."}``
    """
    try:
        ok = satisfies(selected_version, constraint)
    except ValueError as e:
        return {"valid": False, "message": str(e)}
    if ok:
        return {"valid": True}
    return {
        "valid": False,
        "message": f"Version {selected_version} does not satisfy '{constraint}'.",
    }
