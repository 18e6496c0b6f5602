# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT

import io
import json
import tokenize
from typing import Any

from .time import time_in_seconds

__all__ = ["safe_loads", "strip_quotes", "time_in_seconds"]


def safe_loads(arg: str) -> Any:
    """Load ``arg`` as JSON, falling back to the raw string"""
    try:
        return json.loads(arg)
    except json.JSONDecodeError:
        return arg


def strip_quotes(arg: str) -> str:
    """Remove one level of string quotes from ``arg``, e.g. ``'"a:b"'`` -> ``'a:b'``"""
    tokens = tokenize.tokenize(io.BytesIO(arg.encode("utf-8")).readline)
    token = next(t for t in tokens if t.type != tokenize.ENCODING)
    if token.type != tokenize.STRING:
        return arg
    n = 3 if token.string.startswith(("'''", '"""')) else 1
    return token.string[n:-n]
