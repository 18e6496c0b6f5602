# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import copy
import logging
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from typing import Any

from gangsched.cluster import ClusterAPI
from gangsched.cluster import CustomResource
from gangsched.jobspec import JobSpec
from gangsched.resources import ResourceVector

logger = logging.getLogger("gangsched.podgroup")

RESOURCE = CustomResource(
    group="scheduling.sigs.dev", version="v1alpha2", plural="podgroups", kind="PodGroup"
)
GROUP_NAME_ANNOTATION = "scheduling.k8s.io/group-name"

name_prefix = "spark"
name_suffix = "pg"


def podgroup_name(job: JobSpec) -> str:
    return f"{name_prefix}-{job.name}-{name_suffix}"


def owner_reference(job: JobSpec) -> dict[str, Any]:
    return {
        "apiVersion": job.api_version,
        "kind": job.kind,
        "name": job.name,
        "uid": job.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


@dataclass(frozen=True)
class PodGroup:
    """The gang of a job: no pod of the job is bound before ``min_member`` pods fit and
    ``min_resources`` are available"""

    name: str
    namespace: str
    min_member: int
    min_resources: ResourceVector = field(default_factory=ResourceVector)
    owner_references: list[dict[str, Any]] = field(default_factory=list)
    resource_version: str | None = None
    # object as last read from the cluster, keeps fields not modelled here (status, labels)
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def for_job(cls, job: JobSpec, min_member: int, min_resources: ResourceVector) -> "PodGroup":
        return cls(
            name=podgroup_name(job),
            namespace=job.namespace,
            min_member=min_member,
            min_resources=min_resources,
            owner_references=[owner_reference(job)],
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PodGroup":
        metadata = data.get("metadata") or {}
        spec = data.get("spec") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace") or "default",
            min_member=int(spec.get("minMember") or 0),
            min_resources=ResourceVector(spec.get("minResources") or {}),
            owner_references=list(metadata.get("ownerReferences") or []),
            resource_version=metadata.get("resourceVersion"),
            raw=copy.deepcopy(data),
        )

    def to_dict(self) -> dict[str, Any]:
        data = copy.deepcopy(self.raw)
        data["apiVersion"] = RESOURCE.api_version
        data["kind"] = RESOURCE.kind
        metadata = data.setdefault("metadata", {})
        metadata["name"] = self.name
        metadata["namespace"] = self.namespace
        if self.owner_references:
            metadata["ownerReferences"] = copy.deepcopy(self.owner_references)
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version
        spec = data.setdefault("spec", {})
        spec["minMember"] = self.min_member
        spec["minResources"] = self.min_resources.to_dict()
        return data

    def with_min_member(self, min_member: int) -> "PodGroup":
        return replace(self, min_member=min_member)


class PodGroupClient:
    """Typed access to the PodGroup custom resource"""

    def __init__(self, cluster: ClusterAPI) -> None:
        self.cluster = cluster

    def get(self, namespace: str, name: str) -> PodGroup:
        return PodGroup.from_dict(self.cluster.get_object(RESOURCE, namespace, name))

    def create(self, podgroup: PodGroup) -> PodGroup:
        data = self.cluster.create_object(RESOURCE, podgroup.namespace, podgroup.to_dict())
        return PodGroup.from_dict(data)

    def update(self, podgroup: PodGroup) -> PodGroup:
        data = self.cluster.replace_object(RESOURCE, podgroup.namespace, podgroup.to_dict())
        return PodGroup.from_dict(data)
