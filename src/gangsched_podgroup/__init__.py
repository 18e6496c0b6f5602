# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT

from typing import TYPE_CHECKING

from gangsched.hookspec import hookimpl

from .podgroup import GROUP_NAME_ANNOTATION
from .podgroup import PodGroup
from .podgroup import podgroup_name
from .scheduler import GangScheduler
from .scheduler import MissingCRDError

if TYPE_CHECKING:
    from gangsched.cluster import ClusterAPI
    from gangsched.config import Config

__all__ = [
    "GROUP_NAME_ANNOTATION",
    "GangScheduler",
    "MissingCRDError",
    "PodGroup",
    "podgroup_name",
]


@hookimpl
def gangsched_batch_scheduler(
    config: "Config", name: str, cluster: "ClusterAPI | None"
) -> GangScheduler | None:
    if GangScheduler.matches(name):
        return GangScheduler(config=config, cluster=cluster)
    return None
