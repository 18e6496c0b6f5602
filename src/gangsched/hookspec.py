# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from .cluster import ClusterAPI
    from .config import Config
    from .scheduler import BatchScheduler

project_name = "gangsched"

hookspec = pluggy.HookspecMarker(project_name)
hookimpl = pluggy.HookimplMarker(project_name)


@hookspec(firstresult=True)
def gangsched_batch_scheduler(
    config: "Config", name: str, cluster: "ClusterAPI | None"
) -> "BatchScheduler":
    """Batch scheduler backend registered under ``name``"""
    raise NotImplementedError
