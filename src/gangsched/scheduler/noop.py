# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
from typing import TYPE_CHECKING

from ..hookspec import hookimpl
from ..jobspec import JobSpec
from .base import BatchScheduler

if TYPE_CHECKING:
    from ..config import Config


class NoopBatchScheduler(BatchScheduler):
    """Leaves placement to the cluster's default scheduler"""

    name = "default"

    @staticmethod
    def matches(name: str | None) -> bool:
        return name in (None, "", "default", "none")

    @property
    def scheduler_name(self) -> str:
        return "default-scheduler"

    def should_schedule(self, job: JobSpec) -> bool:
        return False

    def do_batch_scheduling(self, job: JobSpec) -> JobSpec:
        return job.deepcopy()


@hookimpl(trylast=True)
def gangsched_batch_scheduler(config: "Config", name: str) -> NoopBatchScheduler | None:
    if NoopBatchScheduler.matches(name):
        return NoopBatchScheduler(config=config)
    return None
