# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import logging

import gangsched.cluster
from gangsched.cluster import AlreadyExistsError
from gangsched.cluster import ClusterAPI
from gangsched.cluster import ConflictError
from gangsched.cluster import NotFoundError
from gangsched.config import Config
from gangsched.jobspec import CLIENT_MODE
from gangsched.jobspec import CLUSTER_MODE
from gangsched.jobspec import JobSpec
from gangsched.resources import ResourceVector
from gangsched.resources import driver_request
from gangsched.resources import executor_request
from gangsched.scheduler import BatchScheduler

from .podgroup import GROUP_NAME_ANNOTATION
from .podgroup import RESOURCE
from .podgroup import PodGroup
from .podgroup import PodGroupClient
from .podgroup import podgroup_name

logger = logging.getLogger("gangsched.podgroup")


class MissingCRDError(Exception):
    pass


class GangScheduler(BatchScheduler):
    """Gang scheduling through a PodGroup per job.

    The PodGroup tells the batch scheduler how many pods of the job and how much aggregate
    resource must be placeable before any pod of the job is bound to a node.  The group name is
    written to the pod templates of the job; a role that already carries it is not synced again.
    """

    name = "volcano"
    aliases = ("volcano", "gang-scheduler", "gang")

    def __init__(self, config: Config | None = None, cluster: ClusterAPI | None = None) -> None:
        super().__init__(config=config)
        self.cluster = cluster or gangsched.cluster.factory(self.config)
        if not self.cluster.crd_exists(RESOURCE.crd_name):
            raise MissingCRDError(
                f"{RESOURCE.crd_name} custom resource definition is required in the cluster"
            )
        self.podgroups = PodGroupClient(self.cluster)
        self.retries: int = self.get_from_config("retries", 3)

    @staticmethod
    def matches(name: str | None) -> bool:
        return name is not None and name.lower() in GangScheduler.aliases

    def should_schedule(self, job: JobSpec) -> bool:
        return job.mode in (CLIENT_MODE, CLUSTER_MODE)

    def do_batch_scheduling(self, job: JobSpec) -> JobSpec:
        job = job.deepcopy()
        job = job.with_updates(
            driver=job.driver.with_updates(annotations=dict(job.driver.annotations or {})),
            executor=job.executor.with_updates(annotations=dict(job.executor.annotations or {})),
        )
        if job.mode == CLIENT_MODE:
            return self.sync_client_mode(job)
        elif job.mode == CLUSTER_MODE:
            return self.sync_cluster_mode(job)
        return job

    def sync_client_mode(self, job: JobSpec) -> JobSpec:
        # the driver runs outside of the cluster, only executors form the gang
        if GROUP_NAME_ANNOTATION in job.executor.annotations:
            return job
        self.sync(job, 1, executor_request(job))
        job.executor.annotations[GROUP_NAME_ANNOTATION] = podgroup_name(job)
        return job

    def sync_cluster_mode(self, job: JobSpec) -> JobSpec:
        # the group starts with the driver as its only member so that the driver is placed first
        if GROUP_NAME_ANNOTATION in job.driver.annotations:
            return job
        total = executor_request(job) + driver_request(job)
        self.sync(job, 1, total)
        name = podgroup_name(job)
        job.executor.annotations[GROUP_NAME_ANNOTATION] = name
        job.driver.annotations[GROUP_NAME_ANNOTATION] = name
        return job

    def sync(self, job: JobSpec, min_member: int, min_resources: ResourceVector) -> PodGroup:
        """Create the PodGroup of ``job`` or bring its member count up to date.

        The resources of an existing group are left as they were created.  Creation races and
        stale updates are retried; any other cluster error is raised unchanged.
        """
        name = podgroup_name(job)
        for attempt in range(1, self.retries + 1):
            try:
                current = self.podgroups.get(job.namespace, name)
            except NotFoundError:
                podgroup = PodGroup.for_job(job, min_member, min_resources)
                try:
                    created = self.podgroups.create(podgroup)
                except AlreadyExistsError:
                    logger.debug(f"{job.namespace}/{name} was created concurrently ({attempt})")
                    continue
                logger.info(
                    f"created PodGroup {job.namespace}/{name} with minMember={min_member} "
                    f"and minResources={min_resources.to_dict()}"
                )
                return created
            if current.min_member == min_member:
                return current
            try:
                updated = self.podgroups.update(current.with_min_member(min_member))
            except ConflictError:
                logger.debug(f"{job.namespace}/{name} changed while updating ({attempt})")
                continue
            logger.info(f"updated PodGroup {job.namespace}/{name} to minMember={min_member}")
            return updated
        raise ConflictError(
            f"PodGroup {job.namespace}/{name} could not be synced in {self.retries} attempts"
        )
