"""
Cache-Control parsing and merging.

Composite responses must never be cached more liberally than any of the
responses they were built from.
"""

from typing import Dict, Iterable, Optional

NO_STORE = "no-store"


def parse_cache_control(value: Optional[str]) -> Dict[str, Optional[str]]:
    directives: Dict[str, Optional[str]] = {}
    if not value:
        return directives
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            name, arg = part.split("=", 1)
            directives[name.strip().lower()] = arg.strip().strip('"')
        else:
            directives[part.lower()] = None
    return directives


def _seconds(raw: Optional[str]) -> Optional[int]:
    try:
        return max(0, int(raw)) if raw is not None else None
    except ValueError:
        return 0


def most_restrictive_cache_control(values: Iterable[Optional[str]]) -> str:
    """
    Merge several Cache-Control values into the most restrictive one.

    A missing value counts as ``no-store``. ``no-store`` anywhere wins outright.
    Otherwise the result is ``public`` only if every input is public, carries
    ``no-cache``/``must-revalidate`` if any input does, and uses the smallest
    ``max-age`` seen. ``s-maxage`` survives only if every input declares one.
    """
    parsed = []
    for value in values:
        directives = parse_cache_control(value)
        if not directives or NO_STORE in directives:
            return NO_STORE
        parsed.append(directives)
    if not parsed:
        return NO_STORE

    parts = ["public" if all("public" in d for d in parsed) else "private"]
    if any("no-cache" in d for d in parsed):
        parts.append("no-cache")
    if any("must-revalidate" in d for d in parsed):
        parts.append("must-revalidate")

    max_ages = [s for s in (_seconds(d.get("max-age")) for d in parsed if "max-age" in d) if s is not None]
    if max_ages:
        parts.append(f"max-age={min(max_ages)}")

    if all("s-maxage" in d for d in parsed):
        shared = [s for s in (_seconds(d.get("s-maxage")) for d in parsed) if s is not None]
        if shared and parts[0] == "public":
            parts.append(f"s-maxage={min(shared)}")

    return ", ".join(parts)
