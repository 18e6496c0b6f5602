# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
import copy
import os
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from typing import Any
from typing import Mapping

import yaml

from .schemas import job_schema

CLIENT_MODE = "client"
CLUSTER_MODE = "cluster"

DRIVER_ROLE = "driver"
EXECUTOR_ROLE = "executor"

default_api_version = "sparkoperator.k8s.io/v1beta1"
default_kind = "SparkApplication"


@dataclass(frozen=True)
class NamePath:
    """A config map ``name`` mounted at ``path``"""

    name: str
    path: str


@dataclass(frozen=True)
class GPUSpec:
    name: str = ""
    # quantities are validated when the pod is patched
    quantity: int | str = 0


@dataclass(frozen=True)
class PrometheusSpec:
    jmx_exporter_jar: str | None = None
    port: int | None = None
    config_file: str | None = None
    configuration: str | None = None


@dataclass(frozen=True)
class MonitoringSpec:
    expose_driver_metrics: bool = False
    expose_executor_metrics: bool = False
    prometheus: PrometheusSpec | None = None


@dataclass(frozen=True)
class RoleSpec:
    """
    Pod-level declarations of one role (driver or executor) of a job.

    Nested Kubernetes objects (affinity, tolerations, security context, sidecar containers, DNS
    config, volume mounts) are kept in their canonical JSON form.
    """

    # ---- resources ----
    cores: float | None = None
    core_request: str | None = None
    core_limit: str | None = None
    memory: str | None = None
    memory_overhead: str | None = None
    # executor only, the driver always has a single instance
    instances: int | None = None
    gpu: GPUSpec | None = None

    # ---- metadata ----
    annotations: dict[str, str] = field(default_factory=dict)

    # ---- scheduling ----
    affinity: dict[str, Any] | None = None
    tolerations: list[dict[str, Any]] = field(default_factory=list)
    node_selector: dict[str, str] = field(default_factory=dict)
    scheduler_name: str | None = None
    host_network: bool | None = None

    # ---- pod ----
    security_context: dict[str, Any] | None = None
    sidecars: list[dict[str, Any]] = field(default_factory=list)
    dns_config: dict[str, Any] | None = None
    config_maps: list[NamePath] = field(default_factory=list)
    volume_mounts: list[dict[str, Any]] = field(default_factory=list)

    extensions: dict[str, Any] = field(default_factory=dict)

    def with_updates(self, **kwargs) -> "RoleSpec":
        return replace(self, **kwargs)


@dataclass(frozen=True)
class JobSpec:
    """
    Declarative description of a driver + N-executor distributed job.

    Instances are never modified in place by this package: every transformation returns a new
    ``JobSpec`` built from a deep copy.
    """

    # ---- identity ----
    name: str
    namespace: str = "default"
    uid: str = ""
    api_version: str = default_api_version
    kind: str = default_kind

    # ---- execution ----
    mode: str = CLUSTER_MODE
    batch_scheduler: str | None = None

    # ---- roles ----
    driver: RoleSpec = field(default_factory=RoleSpec)
    executor: RoleSpec = field(default_factory=RoleSpec)

    # ---- shared pod state ----
    volumes: list[dict[str, Any]] = field(default_factory=list)
    spark_config_map: str | None = None
    hadoop_config_map: str | None = None
    monitoring: MonitoringSpec | None = None

    # fields not interpreted here, kept so that a loaded document can be written back
    extensions: dict[str, Any] = field(default_factory=dict)

    def with_updates(self, **kwargs) -> "JobSpec":
        return replace(self, **kwargs)

    def role(self, name: str) -> RoleSpec:
        if name == DRIVER_ROLE:
            return self.driver
        elif name == EXECUTOR_ROLE:
            return self.executor
        raise ValueError(f"Unknown role {name!r}")

    def deepcopy(self) -> "JobSpec":
        return copy.deepcopy(self)


def load(data: Mapping[str, Any]) -> JobSpec:
    """Build a ``JobSpec`` from a SparkApplication style document"""
    data = job_schema.validate(copy.deepcopy(dict(data)))
    metadata = data["metadata"]
    spec = data["spec"]
    extensions = {k: v for k, v in spec.items() if k not in _job_fields}
    return JobSpec(
        name=metadata["name"],
        namespace=metadata.get("namespace") or "default",
        uid=metadata.get("uid") or "",
        api_version=data.get("apiVersion") or default_api_version,
        kind=data.get("kind") or default_kind,
        mode=spec.get("mode") or CLUSTER_MODE,
        batch_scheduler=spec.get("batchScheduler"),
        driver=load_role(spec.get("driver") or {}),
        executor=load_role(spec.get("executor") or {}),
        volumes=list(spec.get("volumes") or []),
        spark_config_map=spec.get("sparkConfigMap"),
        hadoop_config_map=spec.get("hadoopConfigMap"),
        monitoring=load_monitoring(spec.get("monitoring")),
        extensions=extensions,
    )


def load_role(data: Mapping[str, Any]) -> RoleSpec:
    gpu: GPUSpec | None = None
    if g := data.get("gpu"):
        gpu = GPUSpec(name=g["name"], quantity=g["quantity"])
    return RoleSpec(
        cores=data.get("cores"),
        core_request=data.get("coreRequest"),
        core_limit=data.get("coreLimit"),
        memory=data.get("memory"),
        memory_overhead=data.get("memoryOverhead"),
        instances=data.get("instances"),
        gpu=gpu,
        annotations=dict(data.get("annotations") or {}),
        affinity=data.get("affinity"),
        tolerations=list(data.get("tolerations") or []),
        node_selector=dict(data.get("nodeSelector") or {}),
        scheduler_name=data.get("schedulerName"),
        host_network=data.get("hostNetwork"),
        security_context=data.get("securityContext"),
        sidecars=list(data.get("sidecars") or []),
        dns_config=data.get("dnsConfig"),
        config_maps=[NamePath(c["name"], c["path"]) for c in data.get("configMaps") or []],
        volume_mounts=list(data.get("volumeMounts") or []),
        extensions={k: v for k, v in data.items() if k not in _role_fields},
    )


def load_monitoring(data: Mapping[str, Any] | None) -> MonitoringSpec | None:
    if data is None:
        return None
    prometheus: PrometheusSpec | None = None
    if (p := data.get("prometheus")) is not None:
        prometheus = PrometheusSpec(
            jmx_exporter_jar=p.get("jmxExporterJar"),
            port=p.get("port"),
            config_file=p.get("configFile"),
            configuration=p.get("configuration"),
        )
    return MonitoringSpec(
        expose_driver_metrics=bool(data.get("exposeDriverMetrics")),
        expose_executor_metrics=bool(data.get("exposeExecutorMetrics")),
        prometheus=prometheus,
    )


def dump(job: JobSpec) -> dict[str, Any]:
    """Inverse of ``load``, unset fields are omitted"""
    spec: dict[str, Any] = dict(copy.deepcopy(job.extensions))
    spec["mode"] = job.mode
    if job.batch_scheduler:
        spec["batchScheduler"] = job.batch_scheduler
    if job.volumes:
        spec["volumes"] = copy.deepcopy(job.volumes)
    if job.spark_config_map:
        spec["sparkConfigMap"] = job.spark_config_map
    if job.hadoop_config_map:
        spec["hadoopConfigMap"] = job.hadoop_config_map
    if job.monitoring is not None:
        spec["monitoring"] = dump_monitoring(job.monitoring)
    spec["driver"] = dump_role(job.driver)
    spec["executor"] = dump_role(job.executor)
    metadata: dict[str, Any] = {"name": job.name, "namespace": job.namespace}
    if job.uid:
        metadata["uid"] = job.uid
    return {"apiVersion": job.api_version, "kind": job.kind, "metadata": metadata, "spec": spec}


def dump_role(role: RoleSpec) -> dict[str, Any]:
    data: dict[str, Any] = copy.deepcopy(role.extensions)
    for attr, key in _role_keys.items():
        value = getattr(role, attr)
        if value is None or value == [] or value == {}:
            continue
        data[key] = copy.deepcopy(value)
    if role.gpu is not None:
        data["gpu"] = {"name": role.gpu.name, "quantity": role.gpu.quantity}
    if role.config_maps:
        data["configMaps"] = [{"name": c.name, "path": c.path} for c in role.config_maps]
    return data


def dump_monitoring(monitoring: MonitoringSpec) -> dict[str, Any]:
    data: dict[str, Any] = {
        "exposeDriverMetrics": monitoring.expose_driver_metrics,
        "exposeExecutorMetrics": monitoring.expose_executor_metrics,
    }
    if p := monitoring.prometheus:
        prometheus = {
            "jmxExporterJar": p.jmx_exporter_jar,
            "port": p.port,
            "configFile": p.config_file,
            "configuration": p.configuration,
        }
        data["prometheus"] = {k: v for k, v in prometheus.items() if v is not None}
    return data


def read_job(path: str) -> JobSpec:
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    with open(path) as fh:
        return load(yaml.safe_load(fh))


_job_fields = {
    "mode",
    "batchScheduler",
    "volumes",
    "sparkConfigMap",
    "hadoopConfigMap",
    "monitoring",
    "driver",
    "executor",
}
_role_keys = {
    "cores": "cores",
    "core_request": "coreRequest",
    "core_limit": "coreLimit",
    "memory": "memory",
    "memory_overhead": "memoryOverhead",
    "instances": "instances",
    "annotations": "annotations",
    "affinity": "affinity",
    "tolerations": "tolerations",
    "node_selector": "nodeSelector",
    "scheduler_name": "schedulerName",
    "host_network": "hostNetwork",
    "security_context": "securityContext",
    "sidecars": "sidecars",
    "dns_config": "dnsConfig",
    "volume_mounts": "volumeMounts",
}
_role_fields = set(_role_keys.values()) | {"gpu", "configMaps"}
