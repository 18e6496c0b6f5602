# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import re

# seconds per unit of Go style durations
units: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

_term = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h|d)")


class DurationError(ValueError):
    pass


def time_in_seconds(arg: int | float | str) -> float:
    """Seconds in ``arg``: a number, a numeric string or a duration such as ``1m30s``"""
    if isinstance(arg, (int, float)):
        return float(arg)
    text = arg.strip()
    try:
        return float(text)
    except ValueError:
        pass
    sign = -1.0 if text.startswith("-") else 1.0
    text = text.lstrip("+-")
    total, end = 0.0, 0
    for match in _term.finditer(text):
        if match.start() != end:
            break
        value, unit = match.groups()
        total += float(value) * units[unit]
        end = match.end()
    if not text or end != len(text):
        raise DurationError(f"Invalid duration {arg!r}")
    return sign * total
