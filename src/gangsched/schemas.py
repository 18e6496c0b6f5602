# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT

import logging
import typing

from schema import And
from schema import Optional
from schema import Or
from schema import Schema
from schema import Use

from .util import time_in_seconds

logger = logging.getLogger(__name__)


def dict_str_str(arg: typing.Any) -> bool:
    f = isinstance
    return f(arg, dict) and all([f(_, str) for k, v in arg.items() for _ in (k, v)])


def list_of_str(arg: typing.Any) -> bool:
    return isinstance(arg, list) and all([isinstance(_, str) for _ in arg])


class choose_from:
    def __init__(self, *choices: str | None):
        self.choices = set(choices)

    def __call__(self, arg: str | None) -> str | None:
        if arg not in self.choices:
            raise ValueError(f"Invalid choice {arg!r}, choose from {self.choices!r}")
        return arg


def boolean(arg: typing.Any) -> bool:
    if isinstance(arg, str):
        return arg.lower() not in ("0", "off", "false", "no")
    return bool(arg)


def positive_int(arg: typing.Any) -> int:
    n = int(arg)
    if n < 1:
        raise ValueError(f"expected a positive integer, got {arg!r}")
    return n


def optional_str(arg: typing.Any) -> str | None:
    if arg is None or (isinstance(arg, str) and arg.lower() in ("", "none", "null")):
        return None
    return str(arg)


config_schema = Schema({Optional("debug"): Use(boolean), Optional("plugins"): list_of_str})
scheduler_backend_spec = {
    Optional("scheduler_name"): str,
    Optional("retries"): Use(positive_int),
}
scheduler_schema = Schema(
    {
        Optional("enable"): Use(boolean),
        Optional("default"): Use(optional_str),
        Optional("retries"): Use(positive_int),
        Optional(str): scheduler_backend_spec,
    }
)
kubernetes_schema = Schema(
    {
        Optional("kubeconfig"): Use(optional_str),
        Optional("context"): Use(optional_str),
        Optional("in_cluster"): Use(boolean),
        Optional("request_timeout"): Or(None, Use(time_in_seconds)),
    }
)


class EnvarSchema(Schema):
    def validate(self, data, is_root_eval=True):
        data = super().validate(data, is_root_eval=False)
        if is_root_eval:
            final = {}
            for key, value in data.items():
                name = key[10:].lower()
                if name.startswith(("scheduler_", "kubernetes_")):
                    section, _, field = name.partition("_")
                    final.setdefault(section, {})[field] = value
                else:
                    final.setdefault("config", {})[name] = value
            return final
        return data


environment_variable_schema = EnvarSchema(
    {
        Optional("GANGSCHED_DEBUG"): Use(boolean),
        Optional("GANGSCHED_PLUGINS"): Use(
            lambda x: [_.strip() for _ in x.split(",") if _.split()]
        ),
        Optional("GANGSCHED_SCHEDULER_ENABLE"): Use(boolean),
        Optional("GANGSCHED_SCHEDULER_DEFAULT"): Use(optional_str),
        Optional("GANGSCHED_SCHEDULER_RETRIES"): Use(positive_int),
        Optional("GANGSCHED_KUBERNETES_KUBECONFIG"): Use(optional_str),
        Optional("GANGSCHED_KUBERNETES_CONTEXT"): Use(optional_str),
        Optional("GANGSCHED_KUBERNETES_IN_CLUSTER"): Use(boolean),
        Optional("GANGSCHED_KUBERNETES_REQUEST_TIMEOUT"): Use(time_in_seconds),
    },
    ignore_extra_keys=True,
)


# Job documents follow the SparkApplication layout:
# metadata:
#   name: job-name
#   namespace: default
# spec:
#   mode: cluster
#   batchScheduler: volcano
#   volumes: [...]
#   driver: {cores: 1, memory: 512m, ...}
#   executor: {cores: 1, instances: 2, ...}
#
# Fields this package does not act on (image, mainClass, ...) are passed through untouched.

name_path_spec = {"name": str, "path": str}
gpu_spec = {"name": str, "quantity": Or(int, str)}
prometheus_spec = {
    Optional("jmxExporterJar"): str,
    Optional("port"): int,
    Optional("configFile"): str,
    Optional("configuration"): str,
}
monitoring_spec = {
    Optional("exposeDriverMetrics"): bool,
    Optional("exposeExecutorMetrics"): bool,
    Optional("prometheus"): Or(None, prometheus_spec),
    Optional(str): object,
}
role_spec = {
    Optional("cores"): Or(None, int, float),
    Optional("coreRequest"): Or(None, str),
    Optional("coreLimit"): Or(None, str),
    Optional("memory"): Or(None, str),
    Optional("memoryOverhead"): Or(None, str),
    Optional("instances"): Or(None, And(int, lambda n: n >= 0)),
    Optional("annotations"): Or(None, dict_str_str),
    Optional("affinity"): Or(None, dict),
    Optional("tolerations"): Or(None, [dict]),
    Optional("nodeSelector"): Or(None, dict_str_str),
    Optional("securityContext"): Or(None, dict),
    Optional("gpu"): Or(None, gpu_spec),
    Optional("sidecars"): Or(None, [dict]),
    Optional("dnsConfig"): Or(None, dict),
    Optional("schedulerName"): Or(None, str),
    Optional("hostNetwork"): Or(None, bool),
    Optional("configMaps"): Or(None, [name_path_spec]),
    Optional("volumeMounts"): Or(None, [dict]),
    Optional(str): object,
}
job_schema = Schema(
    {
        Optional("apiVersion"): str,
        Optional("kind"): str,
        "metadata": {
            "name": str,
            Optional("namespace"): str,
            Optional("uid"): str,
            Optional(str): object,
        },
        "spec": {
            Optional("mode"): Use(choose_from("client", "cluster")),
            Optional("batchScheduler"): Or(None, str),
            Optional("volumes"): Or(None, [dict]),
            Optional("sparkConfigMap"): Or(None, str),
            Optional("hadoopConfigMap"): Or(None, str),
            Optional("monitoring"): Or(None, monitoring_spec),
            Optional("driver"): role_spec,
            Optional("executor"): role_spec,
            Optional(str): object,
        },
        Optional(str): object,
    }
)
