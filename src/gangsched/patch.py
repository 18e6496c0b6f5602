# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
"""Admission-time mutation of job pods.

``build_patches`` turns a bare driver or executor pod, in its canonical JSON form, into the list of
JSON patch operations that apply the job's pod-level declarations.  The result depends only on
its two arguments, so a retried admission request always receives the same patch.

Each operation is computed against the document produced by the operations before it: the
``PatchBuilder`` keeps a private copy of the pod and applies every operation it emits to that
copy.  The pod passed in by the caller is never modified.
"""
import copy
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING
from typing import Any
from typing import Callable
from typing import Mapping

import jsonpatch
from jsonpointer import JsonPointer
from kubernetes.utils import parse_quantity

from .jobspec import DRIVER_ROLE
from .jobspec import EXECUTOR_ROLE
from .resources import format_quantity

if TYPE_CHECKING:
    from .jobspec import JobSpec
    from .jobspec import RoleSpec

logger = logging.getLogger("gangsched.patch")

ROLE_LABEL = "spark-role"
DRIVER_CONTAINER_NAME = "spark-kubernetes-driver"
EXECUTOR_CONTAINER_NAME = "executor"

SPARK_CONFIG_MAP_VOLUME_NAME = "spark-configmap-volume"
DEFAULT_SPARK_CONF_DIR = "/etc/spark/conf"
SPARK_CONF_DIR_ENV_VAR = "SPARK_CONF_DIR"

HADOOP_CONFIG_MAP_VOLUME_NAME = "hadoop-configmap-volume"
DEFAULT_HADOOP_CONF_DIR = "/etc/hadoop/conf"
HADOOP_CONF_DIR_ENV_VAR = "HADOOP_CONF_DIR"

PROMETHEUS_CONFIG_MAP_SUFFIX = "prom-conf"
PROMETHEUS_CONFIG_MAP_MOUNT_PATH = "/etc/metrics/conf"

DNS_CLUSTER_FIRST_WITH_HOST_NET = "ClusterFirstWithHostNet"

_missing = object()


class MalformedQuantityError(ValueError):
    pass


@dataclass(frozen=True)
class PatchOperation:
    op: str
    path: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in ("add", "replace"):
            raise ValueError(f"unsupported patch operation {self.op!r}")

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "path": self.path, "value": copy.deepcopy(self.value)}


def pointer(*parts: Any) -> str:
    """JSON pointer to ``parts``, escaping ``~`` and ``/`` in keys"""
    return JsonPointer.from_parts([str(part) for part in parts]).path


class PatchBuilder:
    def __init__(self, pod: Mapping[str, Any]) -> None:
        self._doc: dict[str, Any] = copy.deepcopy(dict(pod))
        self.operations: list[PatchOperation] = []

    @property
    def document(self) -> dict[str, Any]:
        """Copy of the pod as patched so far"""
        return copy.deepcopy(self._doc)

    def get(self, path: str, default: Any = None) -> Any:
        value = JsonPointer(path).resolve(self._doc, _missing)
        return default if value is _missing else value

    def exists(self, path: str) -> bool:
        return JsonPointer(path).resolve(self._doc, _missing) is not _missing

    def set(self, path: str, value: Any) -> None:
        """Set ``path`` to ``value``, creating missing parent objects with the same operation"""
        parts = JsonPointer(path).parts
        for i in range(len(parts)):
            sub = JsonPointer.from_parts(parts[: i + 1])
            if sub.resolve(self._doc, _missing) is _missing:
                nested = value
                for key in reversed(parts[i + 1 :]):
                    nested = {key: nested}
                self._emit("add", sub.path, nested)
                return
        self._emit("replace", path, value)

    def append(self, path: str, value: Any) -> None:
        """Append ``value`` to the list at ``path``, creating the list if needed"""
        current = self.get(path)
        if isinstance(current, list):
            self._emit("add", pointer(*JsonPointer(path).parts, len(current)), value)
        else:
            self.set(path, [value])

    def merge(self, path: str, mapping: Mapping[str, Any]) -> None:
        """Merge ``mapping`` into the object at ``path``; entries of ``mapping`` win"""
        if not mapping:
            return
        current = self.get(path)
        if not isinstance(current, dict):
            self.set(path, {key: mapping[key] for key in sorted(mapping)})
            return
        parts = JsonPointer(path).parts
        for key in sorted(mapping):
            if current.get(key, _missing) != mapping[key]:
                self.set(pointer(*parts, key), mapping[key])

    def _emit(self, op: str, path: str, value: Any) -> None:
        operation = PatchOperation(op=op, path=path, value=copy.deepcopy(value))
        jsonpatch.JsonPatch([operation.to_dict()]).apply(self._doc, in_place=True)
        self.operations.append(operation)


def pod_role(pod: Mapping[str, Any]) -> str | None:
    labels = (pod.get("metadata") or {}).get("labels") or {}
    role = labels.get(ROLE_LABEL)
    if role in (DRIVER_ROLE, EXECUTOR_ROLE):
        return role
    return None


def build_patches(pod: Mapping[str, Any], job: "JobSpec") -> list[PatchOperation]:
    """Patch operations applying ``job``'s declarations for the role of ``pod``.

    Raises ``MalformedQuantityError`` if the role's CPU or GPU quantities cannot be parsed.  Pods
    that are neither driver nor executor pods get no operations.
    """
    role = pod_role(pod)
    if role is None:
        name = (pod.get("metadata") or {}).get("name")
        logger.debug(f"pod {name!r} has no {ROLE_LABEL} label, not patching")
        return []
    spec = job.role(role)
    validate_quantities(spec)
    builder = PatchBuilder(pod)
    for feature in features:
        feature(builder, job, role, spec)
    logger.debug(f"{len(builder.operations)} patch operations for {role} of {job.name}")
    return builder.operations


def patch_document(operations: list[PatchOperation]) -> list[dict[str, Any]]:
    return [operation.to_dict() for operation in operations]


def apply_patches(pod: Mapping[str, Any], operations: list[PatchOperation]) -> dict[str, Any]:
    """Patched copy of ``pod``"""
    return jsonpatch.apply_patch(dict(pod), patch_document(operations))


def validate_quantities(spec: "RoleSpec") -> None:
    for field in ("core_request", "core_limit"):
        if (value := getattr(spec, field)) is not None:
            parse_strict(value, field.replace("_", " "))
    if spec.gpu is not None:
        gpu_quantity(spec.gpu.quantity)


def parse_strict(arg: Any, field: str) -> Decimal:
    try:
        value = parse_quantity(arg)
    except ValueError as e:
        raise MalformedQuantityError(f"invalid {field} {arg!r}: {e}") from None
    # parse_quantity hands NaN and Infinity straight through from Decimal
    if not value.is_finite():
        raise MalformedQuantityError(f"invalid {field} {arg!r}: not a finite quantity")
    return value


def gpu_quantity(arg: int | str) -> Decimal:
    value = parse_strict(arg, "GPU quantity")
    if value != value.to_integral_value():
        raise MalformedQuantityError(f"GPU quantity must be a whole number, got {arg!r}")
    return value


def primary_container(builder: PatchBuilder, role: str) -> int | None:
    """Index of the role's main container, the first container if none has its name, ``None``
    if the pod has no containers"""
    containers = builder.get("/spec/containers")
    if not isinstance(containers, list) or not containers:
        return None
    name = DRIVER_CONTAINER_NAME if role == DRIVER_ROLE else EXECUTOR_CONTAINER_NAME
    for i, container in enumerate(containers):
        if container.get("name") == name:
            return i
    return 0


def container_indices(builder: PatchBuilder) -> range:
    return range(len(builder.get("/spec/containers") or []))


def add_owner_reference(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    existing = builder.get("/metadata/ownerReferences") or []
    reference = {
        "apiVersion": job.api_version,
        "kind": job.kind,
        "name": job.name,
        "uid": job.uid,
        # at most one owner may be the controller
        "controller": not any(ref.get("controller") for ref in existing),
    }
    builder.append("/metadata/ownerReferences", reference)


def add_volumes(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    for volume in job.volumes:
        builder.append("/spec/volumes", volume)
    if not spec.volume_mounts:
        return
    i = primary_container(builder, role)
    if i is None:
        logger.debug(f"{role} pod of {job.name} has no containers, not mounting volumes")
        return
    for mount in spec.volume_mounts:
        builder.append(pointer("spec", "containers", i, "volumeMounts"), mount)


def add_config_map_volume(builder: PatchBuilder, config_map: str, volume_name: str) -> None:
    volume = {"name": volume_name, "configMap": {"name": config_map}}
    builder.append("/spec/volumes", volume)


def add_config_map_mount(builder: PatchBuilder, volume_name: str, mount_path: str) -> None:
    for i in container_indices(builder):
        mount = {"name": volume_name, "mountPath": mount_path}
        builder.append(pointer("spec", "containers", i, "volumeMounts"), mount)


def add_environment_variable(builder: PatchBuilder, name: str, value: str) -> None:
    for i in container_indices(builder):
        builder.append(pointer("spec", "containers", i, "env"), {"name": name, "value": value})


def add_config_maps(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    for config_map in spec.config_maps:
        volume_name = f"{config_map.name}-vol"
        add_config_map_volume(builder, config_map.name, volume_name)
        add_config_map_mount(builder, volume_name, config_map.path)


def add_spark_config_map(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    if not job.spark_config_map:
        return
    add_config_map_volume(builder, job.spark_config_map, SPARK_CONFIG_MAP_VOLUME_NAME)
    add_config_map_mount(builder, SPARK_CONFIG_MAP_VOLUME_NAME, DEFAULT_SPARK_CONF_DIR)
    add_environment_variable(builder, SPARK_CONF_DIR_ENV_VAR, DEFAULT_SPARK_CONF_DIR)


def add_hadoop_config_map(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    if not job.hadoop_config_map:
        return
    add_config_map_volume(builder, job.hadoop_config_map, HADOOP_CONFIG_MAP_VOLUME_NAME)
    add_config_map_mount(builder, HADOOP_CONFIG_MAP_VOLUME_NAME, DEFAULT_HADOOP_CONF_DIR)
    add_environment_variable(builder, HADOOP_CONF_DIR_ENV_VAR, DEFAULT_HADOOP_CONF_DIR)


def prometheus_config_map_name(job: "JobSpec") -> str:
    return f"{job.name}-{PROMETHEUS_CONFIG_MAP_SUFFIX}"


def add_prometheus_config_map(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    monitoring = job.monitoring
    if monitoring is None or monitoring.prometheus is None:
        return
    # an in-container config file means no config map is created for the job
    if monitoring.prometheus.config_file:
        return
    if role == DRIVER_ROLE and not monitoring.expose_driver_metrics:
        return
    if role == EXECUTOR_ROLE and not monitoring.expose_executor_metrics:
        return
    name = prometheus_config_map_name(job)
    volume_name = f"{name}-vol"
    add_config_map_volume(builder, name, volume_name)
    add_config_map_mount(builder, volume_name, PROMETHEUS_CONFIG_MAP_MOUNT_PATH)


def add_affinity(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    if spec.affinity is None:
        return
    if builder.get("/spec/affinity") is not None:
        logger.debug(f"{role} pod of {job.name} already has an affinity, leaving it as is")
        return
    builder.set("/spec/affinity", spec.affinity)


def add_tolerations(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    for toleration in spec.tolerations:
        builder.append("/spec/tolerations", toleration)


def add_security_context(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    if spec.security_context is not None:
        builder.set("/spec/securityContext", spec.security_context)


def add_scheduler_name(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    if spec.scheduler_name:
        builder.set("/spec/schedulerName", spec.scheduler_name)


def add_sidecars(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    for sidecar in spec.sidecars:
        builder.append("/spec/containers", sidecar)


def add_dns_config(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    if spec.dns_config is not None:
        builder.set("/spec/dnsConfig", spec.dns_config)


def add_node_selector(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    builder.merge("/spec/nodeSelector", spec.node_selector)


def add_annotations(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    builder.merge("/metadata/annotations", spec.annotations)


def add_gpu(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    gpu = spec.gpu
    if gpu is None:
        return
    if not gpu.name:
        logger.debug(f"no GPU resource name (e.g. nvidia.com/gpu) given for {role} of {job.name}")
        return
    quantity = gpu_quantity(gpu.quantity)
    if quantity <= 0:
        logger.debug(f"GPU quantity for {role} of {job.name} must be positive, got {quantity}")
        return
    i = primary_container(builder, role)
    if i is None:
        logger.debug(f"{role} pod of {job.name} has no containers, not adding GPUs")
        return
    value = format_quantity(quantity)
    builder.set(pointer("spec", "containers", i, "resources", "limits", gpu.name), value)
    requests = pointer("spec", "containers", i, "resources", "requests")
    if isinstance(builder.get(requests), dict):
        builder.set(pointer("spec", "containers", i, "resources", "requests", gpu.name), value)


def add_host_network(builder: PatchBuilder, job: "JobSpec", role: str, spec: "RoleSpec"):
    if spec.host_network is not True:
        return
    builder.set("/spec/hostNetwork", True)
    # pods on the host network only resolve cluster names with this policy
    builder.set("/spec/dnsPolicy", DNS_CLUSTER_FIRST_WITH_HOST_NET)


features: list[Callable[[PatchBuilder, "JobSpec", str, "RoleSpec"], None]] = [
    add_owner_reference,
    add_volumes,
    add_config_maps,
    add_spark_config_map,
    add_hadoop_config_map,
    add_prometheus_config_map,
    add_affinity,
    add_tolerations,
    add_security_context,
    add_scheduler_name,
    add_sidecars,
    add_dns_config,
    add_node_selector,
    add_annotations,
    add_gpu,
    add_host_network,
]
