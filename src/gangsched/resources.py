# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
"""Aggregate the resource requests of a job's roles.

A ``ResourceVector`` maps a resource name (``cpu``, ``memory`` or any extended resource such as
``nvidia.com/gpu``) to an arbitrary precision ``Decimal``.  Vectors form a commutative monoid
under ``+`` with the empty vector as identity; absent keys count as zero.

Quantities are parsed fail-open: a field that cannot be parsed is left out of the vector so that
one malformed declaration does not block scheduling of the well formed parts.
"""
import functools
import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import TYPE_CHECKING
from typing import Any
from typing import Iterator

from kubernetes.utils import parse_quantity

if TYPE_CHECKING:
    from .jobspec import JobSpec
    from .jobspec import RoleSpec

logger = logging.getLogger("gangsched.resources")

CPU = "cpu"
MEMORY = "memory"


class ResourceVector(Mapping):
    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        items: dict[str, Decimal] = {}
        for name, value in (data or {}).items():
            items[name] = value if isinstance(value, Decimal) else parse_quantity(value)
        self._data = items

    def __getitem__(self, name: str) -> Decimal:
        return self._data[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        items = ", ".join(f"{k}={format_quantity(v)}" for k, v in sorted(self._data.items()))
        return f"ResourceVector({items})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mapping):
            return NotImplemented
        keys = set(self) | set(other)
        return all(self.get(k, Decimal(0)) == other.get(k, Decimal(0)) for k in keys)

    def __hash__(self) -> int:
        return hash(frozenset((k, v) for k, v in self._data.items() if v != 0))

    def __add__(self, other: "ResourceVector") -> "ResourceVector":
        if not isinstance(other, ResourceVector):
            return NotImplemented
        merged = dict(self._data)
        for name, value in other._data.items():
            merged[name] = merged.get(name, Decimal(0)) + value
        return ResourceVector(merged)

    def __mul__(self, count: int) -> "ResourceVector":
        if not isinstance(count, int):
            return NotImplemented
        if count < 0:
            raise ValueError(f"cannot scale a resource vector by {count}")
        if count == 0:
            return ResourceVector()
        return ResourceVector({name: value * count for name, value in self._data.items()})

    __rmul__ = __mul__

    def is_zero(self) -> bool:
        return all(v == 0 for v in self._data.values())

    def to_dict(self) -> dict[str, str]:
        """Quantity strings keyed by resource name, as written to the cluster"""
        return {name: format_quantity(value) for name, value in sorted(self._data.items())}


def aggregate(*vectors: ResourceVector) -> ResourceVector:
    """Sum of ``vectors``, the empty vector if there are none"""
    return functools.reduce(lambda a, b: a + b, vectors, ResourceVector())


def format_quantity(value: Decimal) -> str:
    """Render ``value`` as a plain decimal quantity, e.g. ``Decimal('3.221225472E+9')`` ->
    ``'3221225472'``"""
    text = format(value.normalize(), "f")
    return "0" if text in ("-0", "") else text


def try_parse_quantity(arg: Any, field: str = "quantity") -> Decimal | None:
    try:
        value = parse_quantity(arg)
    except ValueError:
        value = None
    if value is None or not value.is_finite():
        logger.debug(f"ignoring malformed {field} {arg!r}")
        return None
    return value


def request_vector(role: "RoleSpec", instances: int | None = None) -> ResourceVector:
    """Resources requested by ``instances`` copies of ``role``.

    CPU is the first that is set (and parses) of ``core_request``, ``cores`` and ``core_limit``.
    Memory is ``memory`` plus ``memory_overhead``; the overhead alone is not counted.
    """
    request: dict[str, Decimal] = {}

    if role.core_request is not None:
        if (value := try_parse_quantity(role.core_request, "core request")) is not None:
            request[CPU] = value
    if CPU not in request and role.cores is not None:
        if (value := try_parse_quantity(f"{role.cores:f}", "cores")) is not None:
            request[CPU] = value
    if CPU not in request and role.core_limit is not None:
        if (value := try_parse_quantity(role.core_limit, "core limit")) is not None:
            request[CPU] = value

    if role.memory is not None:
        if (value := try_parse_quantity(role.memory, "memory")) is not None:
            request[MEMORY] = value
    if role.memory_overhead is not None:
        if (value := try_parse_quantity(role.memory_overhead, "memory overhead")) is not None:
            if MEMORY in request:
                request[MEMORY] += value
            else:
                logger.warning(
                    f"memory overhead {role.memory_overhead!r} is ignored because memory is unset"
                )

    vector = ResourceVector(request)
    if instances is None:
        return vector
    return vector * instances


def executor_request(job: "JobSpec") -> ResourceVector:
    instances = job.executor.instances
    return request_vector(job.executor, 1 if instances is None else instances)


def driver_request(job: "JobSpec") -> ResourceVector:
    return request_vector(job.driver)
