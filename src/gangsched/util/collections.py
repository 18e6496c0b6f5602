# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import copy
from typing import Any


def merge(dest: Any, source: Any) -> Any:
    """Merge ``source`` into a copy of ``dest``.

    Dictionaries are merged recursively, lists are concatenated with duplicates dropped and any
    other value in ``source`` replaces the value in ``dest``.
    """
    if isinstance(dest, dict) and isinstance(source, dict):
        merged = copy.deepcopy(dest)
        for key, value in source.items():
            if key in merged:
                merged[key] = merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    if isinstance(dest, list) and isinstance(source, list):
        merged_list = list(dest)
        merged_list.extend(item for item in source if item not in dest)
        return merged_list
    return copy.deepcopy(source)
