# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT

import copy

import jsonpatch
import pytest

from gangsched import patch
from gangsched.jobspec import GPUSpec
from gangsched.jobspec import MonitoringSpec
from gangsched.jobspec import NamePath
from gangsched.jobspec import PrometheusSpec
from gangsched.jobspec import RoleSpec


def patched(pod, job):
    operations = patch.build_patches(pod, job)
    return jsonpatch.apply_patch(pod, patch.patch_document(operations))


def ops_for(operations, prefix):
    return [op for op in operations if op.path.startswith(prefix)]


def test_bare_job_only_adds_owner_reference(driver_pod, job):
    operations = patch.build_patches(driver_pod, job)
    assert patch.patch_document(operations) == [
        {
            "op": "add",
            "path": "/metadata/ownerReferences",
            "value": [
                {
                    "apiVersion": "sparkoperator.k8s.io/v1beta1",
                    "kind": "SparkApplication",
                    "name": "app",
                    "uid": "uid-1234",
                    "controller": True,
                }
            ],
        }
    ]


def test_owner_reference_is_appended(driver_pod, job):
    existing = {"apiVersion": "v1", "kind": "Job", "name": "owner", "uid": "x", "controller": True}
    driver_pod["metadata"]["ownerReferences"] = [existing]
    pod = patched(driver_pod, job)
    refs = pod["metadata"]["ownerReferences"]
    assert len(refs) == 2
    assert refs[0] == existing
    assert refs[1]["uid"] == "uid-1234"
    assert refs[1]["controller"] is False


def test_pod_without_role_is_not_patched(driver_pod, job):
    driver_pod["metadata"]["labels"] = {"app": "other"}
    assert patch.build_patches(driver_pod, job) == []
    del driver_pod["metadata"]["labels"]
    assert patch.build_patches(driver_pod, job) == []


def test_base_pod_is_not_modified(driver_pod, job, gpu):
    job = job.with_updates(
        volumes=[{"name": "data", "emptyDir": {}}],
        spark_config_map="spark-conf",
        driver=job.driver.with_updates(
            gpu=gpu, annotations={"a": "b"}, node_selector={"disk": "ssd"}, host_network=True
        ),
    )
    before = copy.deepcopy(driver_pod)
    operations = patch.build_patches(driver_pod, job)
    assert len(operations) > 5
    assert driver_pod == before


def test_patches_are_deterministic(executor_pod, job):
    job = job.with_updates(
        volumes=[{"name": "data", "emptyDir": {}}],
        hadoop_config_map="hadoop-conf",
        executor=job.executor.with_updates(
            annotations={"z": "1", "a": "2", "m": "3"},
            node_selector={"zone": "b", "arch": "amd64"},
            tolerations=[{"key": "gpu", "operator": "Exists"}],
        ),
    )
    first = patch.patch_document(patch.build_patches(executor_pod, job))
    second = patch.patch_document(patch.build_patches(copy.deepcopy(executor_pod), job))
    assert first == second


def test_volumes_and_mounts(executor_pod, job):
    executor_pod["spec"]["volumes"] = [{"name": "existing", "emptyDir": {}}]
    mount = {"name": "data", "mountPath": "/data"}
    job = job.with_updates(
        volumes=[{"name": "data", "emptyDir": {}}, {"name": "scratch", "emptyDir": {}}],
        executor=job.executor.with_updates(volume_mounts=[mount]),
    )
    operations = patch.build_patches(executor_pod, job)
    paths = [op.path for op in ops_for(operations, "/spec/volumes")]
    assert paths == ["/spec/volumes/1", "/spec/volumes/2"]
    pod = patched(executor_pod, job)
    assert [v["name"] for v in pod["spec"]["volumes"]] == ["existing", "data", "scratch"]
    # mounts go to the executor container, not the sidecar in front of it
    assert "volumeMounts" not in pod["spec"]["containers"][0]
    assert pod["spec"]["containers"][1]["volumeMounts"] == [mount]


def test_pod_without_containers(executor_pod, job, gpu):
    del executor_pod["spec"]["containers"]
    job = job.with_updates(
        volumes=[{"name": "data", "emptyDir": {}}],
        executor=job.executor.with_updates(
            volume_mounts=[{"name": "data", "mountPath": "/data"}], gpu=gpu
        ),
    )
    operations = patch.build_patches(executor_pod, job)
    assert not ops_for(operations, "/spec/containers")
    spec = patched(executor_pod, job)["spec"]
    assert "containers" not in spec
    assert [v["name"] for v in spec["volumes"]] == ["data"]


def test_spark_and_hadoop_config_maps(executor_pod, job):
    job = job.with_updates(spark_config_map="spark-conf", hadoop_config_map="hadoop-conf")
    pod = patched(executor_pod, job)
    volumes = pod["spec"]["volumes"]
    assert volumes == [
        {"name": "spark-configmap-volume", "configMap": {"name": "spark-conf"}},
        {"name": "hadoop-configmap-volume", "configMap": {"name": "hadoop-conf"}},
    ]
    for container in pod["spec"]["containers"]:
        assert container["volumeMounts"] == [
            {"name": "spark-configmap-volume", "mountPath": "/etc/spark/conf"},
            {"name": "hadoop-configmap-volume", "mountPath": "/etc/hadoop/conf"},
        ]
        assert container["env"] == [
            {"name": "SPARK_CONF_DIR", "value": "/etc/spark/conf"},
            {"name": "HADOOP_CONF_DIR", "value": "/etc/hadoop/conf"},
        ]


def test_role_config_maps(driver_pod, job):
    job = job.with_updates(
        driver=job.driver.with_updates(config_maps=[NamePath("extra", "/etc/extra")])
    )
    pod = patched(driver_pod, job)
    assert pod["spec"]["volumes"] == [{"name": "extra-vol", "configMap": {"name": "extra"}}]
    container = pod["spec"]["containers"][0]
    assert container["volumeMounts"] == [{"name": "extra-vol", "mountPath": "/etc/extra"}]


def test_prometheus_config_map(driver_pod, executor_pod, job):
    monitoring = MonitoringSpec(
        expose_driver_metrics=True,
        expose_executor_metrics=False,
        prometheus=PrometheusSpec(jmx_exporter_jar="/prometheus/jmx.jar", port=8090),
    )
    job = job.with_updates(monitoring=monitoring)
    pod = patched(driver_pod, job)
    assert pod["spec"]["volumes"] == [
        {"name": "app-prom-conf-vol", "configMap": {"name": "app-prom-conf"}}
    ]
    assert pod["spec"]["containers"][0]["volumeMounts"] == [
        {"name": "app-prom-conf-vol", "mountPath": "/etc/metrics/conf"}
    ]
    assert "volumes" not in patched(executor_pod, job)["spec"]

    prometheus = PrometheusSpec(jmx_exporter_jar="/prometheus/jmx.jar", config_file="/p.yaml")
    job = job.with_updates(monitoring=MonitoringSpec(True, True, prometheus))
    assert "volumes" not in patched(driver_pod, job)["spec"]


def test_affinity_is_not_overwritten(driver_pod, job):
    affinity = {"nodeAffinity": {"requiredDuringSchedulingIgnoredDuringExecution": {}}}
    job = job.with_updates(driver=job.driver.with_updates(affinity=affinity))
    assert patched(driver_pod, job)["spec"]["affinity"] == affinity
    driver_pod["spec"]["affinity"] = {"podAffinity": {}}
    assert patched(driver_pod, job)["spec"]["affinity"] == {"podAffinity": {}}


def test_tolerations_security_context_dns_and_scheduler(driver_pod, job):
    toleration = {"key": "dedicated", "operator": "Equal", "value": "spark", "effect": "NoSchedule"}
    driver_pod["spec"]["schedulerName"] = "default-scheduler"
    job = job.with_updates(
        driver=job.driver.with_updates(
            tolerations=[toleration],
            security_context={"runAsUser": 185},
            dns_config={"nameservers": ["1.2.3.4"]},
            scheduler_name="volcano",
        )
    )
    operations = patch.build_patches(driver_pod, job)
    (op,) = ops_for(operations, "/spec/schedulerName")
    assert op.op == "replace"
    pod = jsonpatch.apply_patch(driver_pod, patch.patch_document(operations))
    assert pod["spec"]["tolerations"] == [toleration]
    assert pod["spec"]["securityContext"] == {"runAsUser": 185}
    assert pod["spec"]["dnsConfig"] == {"nameservers": ["1.2.3.4"]}
    assert pod["spec"]["schedulerName"] == "volcano"


def test_sidecars(driver_pod, job):
    sidecar = {"name": "logger", "image": "fluent-bit"}
    job = job.with_updates(driver=job.driver.with_updates(sidecars=[sidecar]))
    operations = patch.build_patches(driver_pod, job)
    assert [op.path for op in ops_for(operations, "/spec/containers")] == ["/spec/containers/1"]
    names = [c["name"] for c in patched(driver_pod, job)["spec"]["containers"]]
    assert names == ["spark-kubernetes-driver", "logger"]


def test_node_selector_merge(driver_pod, job):
    driver_pod["spec"]["nodeSelector"] = {"disk": "hdd", "zone": "a"}
    job = job.with_updates(
        driver=job.driver.with_updates(node_selector={"zone": "a", "disk": "ssd", "arch": "arm"})
    )
    operations = ops_for(patch.build_patches(driver_pod, job), "/spec/nodeSelector")
    # unchanged entries produce no operation, keys are visited in sorted order
    assert [(op.op, op.path, op.value) for op in operations] == [
        ("add", "/spec/nodeSelector/arch", "arm"),
        ("replace", "/spec/nodeSelector/disk", "ssd"),
    ]
    assert patched(driver_pod, job)["spec"]["nodeSelector"] == {
        "arch": "arm",
        "disk": "ssd",
        "zone": "a",
    }


def test_annotations(driver_pod, job):
    annotations = {"scheduling.k8s.io/group-name": "spark-app-pg", "team": "data"}
    job = job.with_updates(driver=job.driver.with_updates(annotations=annotations))
    (op,) = ops_for(patch.build_patches(driver_pod, job), "/metadata/annotations")
    assert op.op == "add"
    assert op.value == annotations

    driver_pod["metadata"]["annotations"] = {"team": "ml"}
    operations = ops_for(patch.build_patches(driver_pod, job), "/metadata/annotations")
    assert [op.path for op in operations] == [
        "/metadata/annotations/scheduling.k8s.io~1group-name",
        "/metadata/annotations/team",
    ]
    assert patched(driver_pod, job)["metadata"]["annotations"] == annotations


def test_gpu_limits_and_requests(driver_pod, job, gpu):
    job = job.with_updates(driver=job.driver.with_updates(gpu=gpu))
    resources = patched(driver_pod, job)["spec"]["containers"][0]["resources"]
    assert resources["limits"] == {"cpu": "1", "nvidia.com/gpu": "2"}
    assert resources["requests"] == {"cpu": "1", "nvidia.com/gpu": "2"}


def test_gpu_without_requests(executor_pod, job):
    job = job.with_updates(
        executor=job.executor.with_updates(gpu=GPUSpec(name="amd.com/gpu", quantity="1"))
    )
    resources = patched(executor_pod, job)["spec"]["containers"][1]["resources"]
    assert resources == {"limits": {"amd.com/gpu": "1"}}


def test_gpu_creates_missing_resources(driver_pod, job, gpu):
    del driver_pod["spec"]["containers"][0]["resources"]
    job = job.with_updates(driver=job.driver.with_updates(gpu=gpu))
    (op,) = ops_for(patch.build_patches(driver_pod, job), "/spec/containers")
    assert op.op == "add"
    assert op.path == "/spec/containers/0/resources"
    assert op.value == {"limits": {"nvidia.com/gpu": "2"}}


@pytest.mark.parametrize(
    "gpu",
    [GPUSpec(name="", quantity=1), GPUSpec(name="nvidia.com/gpu", quantity=0)],
)
def test_gpu_is_skipped(driver_pod, job, gpu):
    job = job.with_updates(driver=job.driver.with_updates(gpu=gpu))
    pod = patched(driver_pod, job)
    assert pod["spec"]["containers"][0]["resources"]["limits"] == {"cpu": "1"}


@pytest.mark.parametrize(
    "role",
    [
        RoleSpec(gpu=GPUSpec(name="nvidia.com/gpu", quantity="1.5")),
        RoleSpec(gpu=GPUSpec(name="nvidia.com/gpu", quantity="lots")),
        RoleSpec(core_request="one"),
        RoleSpec(core_limit="2 cores"),
        RoleSpec(core_request="NaN"),
        RoleSpec(core_limit="-Infinity"),
        RoleSpec(gpu=GPUSpec(name="nvidia.com/gpu", quantity="Infinity")),
    ],
)
def test_malformed_quantity(driver_pod, job, role):
    job = job.with_updates(driver=role)
    with pytest.raises(patch.MalformedQuantityError):
        patch.build_patches(driver_pod, job)


def test_host_network(driver_pod, job):
    job = job.with_updates(driver=job.driver.with_updates(host_network=True))
    spec = patched(driver_pod, job)["spec"]
    assert spec["hostNetwork"] is True
    assert spec["dnsPolicy"] == "ClusterFirstWithHostNet"

    for value in (False, None):
        job = job.with_updates(driver=job.driver.with_updates(host_network=value))
        spec = patched(driver_pod, job)["spec"]
        assert "hostNetwork" not in spec
        assert "dnsPolicy" not in spec


def test_operations_apply_in_order(executor_pod, job):
    # every operation is valid against the document produced by the ones before it
    job = job.with_updates(
        volumes=[{"name": "data", "emptyDir": {}}],
        spark_config_map="spark-conf",
        executor=job.executor.with_updates(
            volume_mounts=[{"name": "data", "mountPath": "/data"}],
            sidecars=[{"name": "logger", "image": "fluent-bit"}],
            gpu=GPUSpec(name="nvidia.com/gpu", quantity=1),
        ),
    )
    operations = patch.build_patches(executor_pod, job)
    pod = executor_pod
    for operation in operations:
        pod = jsonpatch.apply_patch(pod, [operation.to_dict()])
    assert pod == patch.apply_patches(executor_pod, operations)
    names = [c["name"] for c in pod["spec"]["containers"]]
    assert names == ["istio-proxy", "executor", "logger"]
    assert "env" not in pod["spec"]["containers"][2]


def test_pointer_escapes_keys():
    assert patch.pointer("metadata", "annotations", "a/b~c") == "/metadata/annotations/a~1b~0c"
    assert patch.pointer("spec", "containers", 0) == "/spec/containers/0"


def test_unsupported_operation():
    with pytest.raises(ValueError):
        patch.PatchOperation(op="remove", path="/spec", value=None)
