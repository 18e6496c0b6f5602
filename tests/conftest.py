# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT

import copy
import itertools
import os
from collections import Counter
from collections import defaultdict
from typing import Any

import pytest

from gangsched.cluster import AlreadyExistsError
from gangsched.cluster import ConflictError
from gangsched.cluster import CustomResource
from gangsched.cluster import NotFoundError
from gangsched.jobspec import GPUSpec
from gangsched.jobspec import JobSpec
from gangsched.jobspec import RoleSpec


class FakeCluster:
    """In-memory ``ClusterAPI``.

    ``errors[method]`` is a queue consumed one entry per call of ``method`` (``get``, ``create``
    or ``replace``).  An exception entry is raised, a callable entry is called with the cluster
    first (and may itself raise), ``None`` lets the call through.
    """

    def __init__(self, crds=("podgroups.scheduling.sigs.dev",)):
        self.crds = set(crds)
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.calls: Counter = Counter()
        self.errors: dict[str, list[Any]] = defaultdict(list)
        self._versions = itertools.count(1)

    def inject(self, method, *entries):
        self.errors[method].extend(entries)

    def put(self, resource: CustomResource, namespace: str, body: dict[str, Any]):
        """Store ``body`` as if another client had written it"""
        obj = copy.deepcopy(body)
        obj.setdefault("metadata", {})["namespace"] = namespace
        obj["metadata"]["resourceVersion"] = str(next(self._versions))
        self.objects[(resource.plural, namespace, obj["metadata"]["name"])] = obj
        return copy.deepcopy(obj)

    def stored(self, resource: CustomResource, namespace: str, name: str):
        return self.objects.get((resource.plural, namespace, name))

    def _before(self, method):
        self.calls[method] += 1
        if self.errors[method]:
            entry = self.errors[method].pop(0)
            if isinstance(entry, Exception):
                raise entry
            if callable(entry):
                entry(self)

    def get_object(self, resource, namespace, name):
        self._before("get")
        key = (resource.plural, namespace, name)
        if key not in self.objects:
            raise NotFoundError(f"404 NotFound: {name}", status=404, reason="NotFound")
        return copy.deepcopy(self.objects[key])

    def create_object(self, resource, namespace, body):
        self._before("create")
        name = body["metadata"]["name"]
        if (resource.plural, namespace, name) in self.objects:
            message = f"409 AlreadyExists: {name}"
            raise AlreadyExistsError(message, status=409, reason="AlreadyExists")
        return self.put(resource, namespace, body)

    def replace_object(self, resource, namespace, body):
        self._before("replace")
        name = body["metadata"]["name"]
        key = (resource.plural, namespace, name)
        if key not in self.objects:
            raise NotFoundError(f"404 NotFound: {name}", status=404, reason="NotFound")
        current = self.objects[key]["metadata"]["resourceVersion"]
        if body["metadata"].get("resourceVersion") != current:
            raise ConflictError(f"409 Conflict: {name}", status=409, reason="Conflict")
        return self.put(resource, namespace, body)

    def crd_exists(self, name):
        return name in self.crds


@pytest.fixture(autouse=True)
def isolated_environment(tmpdir):
    """Run every test in an empty directory with no user or site configuration"""
    save_env = os.environ.copy()
    cwd = os.getcwd()
    for var in list(os.environ):
        if var.startswith("GANGSCHED_"):
            os.environ.pop(var)
    os.environ["GANGSCHED_SITE_CONFIG"] = os.path.join(tmpdir.strpath, "site.yaml")
    os.environ["GANGSCHED_GLOBAL_CONFIG"] = os.path.join(tmpdir.strpath, "global.yaml")
    os.chdir(tmpdir.strpath)
    try:
        yield
    finally:
        os.chdir(cwd)
        os.environ.clear()
        os.environ.update(save_env)


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def job():
    return JobSpec(
        name="app",
        namespace="ns",
        uid="uid-1234",
        batch_scheduler="volcano",
        driver=RoleSpec(cores=1, memory="1Gi", memory_overhead="512Mi"),
        executor=RoleSpec(cores=2, memory="2Gi", instances=3),
    )


@pytest.fixture
def driver_pod():
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "app-driver", "namespace": "ns", "labels": {"spark-role": "driver"}},
        "spec": {
            "containers": [
                {
                    "name": "spark-kubernetes-driver",
                    "image": "spark:3.5",
                    "resources": {"requests": {"cpu": "1"}, "limits": {"cpu": "1"}},
                }
            ]
        },
    }


@pytest.fixture
def executor_pod():
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "app-exec-1", "namespace": "ns", "labels": {"spark-role": "executor"}},
        "spec": {
            "containers": [
                {"name": "istio-proxy", "image": "istio/proxyv2"},
                {"name": "executor", "image": "spark:3.5", "resources": {"limits": {}}},
            ]
        },
    }


@pytest.fixture
def gpu():
    return GPUSpec(name="nvidia.com/gpu", quantity=2)
