# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import logging
import threading
from typing import TYPE_CHECKING

from ..config import Config
from ..jobspec import JobSpec
from .base import BatchScheduler
from .noop import NoopBatchScheduler

if TYPE_CHECKING:
    from ..cluster import ClusterAPI

__all__ = [
    "BatchScheduler",
    "BatchSchedulerManager",
    "NoopBatchScheduler",
    "prepare_submission",
]

logger = logging.getLogger("gangsched.scheduler")


class BatchSchedulerManager:
    """Creates batch scheduler backends on first use and hands out the same instance afterwards.

    Backends are looked up through the ``gangsched_batch_scheduler`` hook of the plugin manager
    owned by ``config``.
    """

    def __init__(self, config: Config | None = None, cluster: "ClusterAPI | None" = None) -> None:
        self.config = config or Config()
        self.cluster = cluster
        self.lock = threading.Lock()
        self.schedulers: dict[str, BatchScheduler] = {}

    def get(self, name: str | None) -> BatchScheduler:
        key = name or "default"
        with self.lock:
            if key in self.schedulers:
                return self.schedulers[key]
            hook = self.config.pluginmanager.hook
            scheduler = hook.gangsched_batch_scheduler(
                config=self.config, name=name, cluster=self.cluster
            )
            if scheduler is None:
                raise ValueError(f"No batch scheduler registered for {name!r}")
            logger.debug(f"created {scheduler.name} batch scheduler for {name!r}")
            self.schedulers[key] = scheduler
            return scheduler


def prepare_submission(job: JobSpec, manager: BatchSchedulerManager) -> JobSpec:
    """Hand ``job`` to its batch scheduler before it is submitted.

    When the job names a batch scheduler (or a default one is configured) and batch scheduling
    is enabled, both roles are pointed at the backend's pod scheduler and the backend prepares
    its cluster state.  Otherwise ``job`` is returned as is.
    """
    name = job.batch_scheduler or manager.config.get("scheduler:default")
    if not name:
        return job
    if not manager.config.get("scheduler:enable"):
        logger.debug(f"batch scheduling is disabled, ignoring {name!r} for {job.name}")
        return job
    scheduler = manager.get(name)
    if not scheduler.should_schedule(job):
        return job
    scheduler_name = scheduler.scheduler_name
    job = job.with_updates(
        driver=job.driver.with_updates(scheduler_name=scheduler_name),
        executor=job.executor.with_updates(scheduler_name=scheduler_name),
    )
    logger.info(f"batch scheduling {job.namespace}/{job.name} with {scheduler.name}")
    return scheduler.do_batch_scheduling(job)
