"""Duration parsing for timeouts, waits and retry delays.

Durations are written either as ISO 8601 strings (``PT1S``, ``P1DT2H30M``)
or as inline mappings (``{"seconds": 1, "milliseconds": 500}``).
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Any

__all__ = ["format_duration", "parse_duration"]

_ISO_DURATION = re.compile(
    r"^P(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)

_INLINE_UNITS = ("days", "hours", "minutes", "seconds", "milliseconds")


def parse_duration(value: Any) -> timedelta:
    """Parse a duration value.

    Args:
        value: An ISO 8601 duration string, an inline mapping with any of
            ``days``, ``hours``, ``minutes``, ``seconds`` and
            ``milliseconds``, or an existing :class:`~datetime.timedelta`.

    Returns:
        The parsed duration.

    Raises:
        ValueError: If the value is not a valid duration.

    Example:
        >>> parse_duration("PT1M30S")
        datetime.timedelta(seconds=90)
        >>> parse_duration({"milliseconds": 250})
        datetime.timedelta(microseconds=250000)
    """
    if isinstance(value, timedelta):
        return value

    if isinstance(value, dict):
        unknown = set(value) - set(_INLINE_UNITS)
        if unknown or not value:
            msg = f"Invalid inline duration {value!r}"
            raise ValueError(msg)
        return timedelta(**{unit: float(amount) for unit, amount in value.items()})

    if isinstance(value, str):
        match = _ISO_DURATION.match(value.strip())
        if match is None or value.strip() in ("P", "PT") or value.strip().endswith("T"):
            msg = f"Invalid ISO 8601 duration {value!r}"
            raise ValueError(msg)
        parts = {unit: float(amount) for unit, amount in match.groupdict().items() if amount is not None}
        return timedelta(**parts)

    msg = f"Unsupported duration value {value!r}"
    raise ValueError(msg)


def format_duration(value: timedelta) -> str:
    """Render a duration as an ISO 8601 ``PT..S`` string."""
    seconds = value.total_seconds()
    if seconds == int(seconds):
        return f"PT{int(seconds)}S"
    return f"PT{seconds}S"
