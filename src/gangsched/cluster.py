# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
"""Access to the custom resources of the cluster.

``ClusterAPI`` is the narrow contract the batch scheduler backends rely on.  Objects are passed in
their canonical JSON (dict) form.  Errors are reported with the exceptions below: ``NotFoundError``,
``AlreadyExistsError`` and ``ConflictError`` are the distinguished cases, anything else is an opaque
``ClusterAPIError``.
"""
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING
from typing import Any
from typing import Callable
from typing import Protocol

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger("gangsched.cluster")


class ClusterAPIError(Exception):
    def __init__(self, message: str, status: int | None = None, reason: str | None = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class NotFoundError(ClusterAPIError):
    pass


class AlreadyExistsError(ClusterAPIError):
    pass


class ConflictError(ClusterAPIError):
    pass


@dataclass(frozen=True)
class CustomResource:
    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    @property
    def crd_name(self) -> str:
        return f"{self.plural}.{self.group}"


class ClusterAPI(Protocol):
    def get_object(self, resource: CustomResource, namespace: str, name: str) -> dict[str, Any]:
        """Fetch an object, raise ``NotFoundError`` if it does not exist"""
        raise NotImplementedError

    def create_object(
        self, resource: CustomResource, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Create an object, raise ``AlreadyExistsError`` if the name is taken"""
        raise NotImplementedError

    def replace_object(
        self, resource: CustomResource, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Replace an object, raise ``ConflictError`` if it changed since it was read"""
        raise NotImplementedError

    def crd_exists(self, name: str) -> bool:
        raise NotImplementedError


class KubernetesClusterAPI:
    """``ClusterAPI`` backed by the official kubernetes client"""

    def __init__(
        self,
        api_client: k8s_client.ApiClient | None = None,
        *,
        custom_api: Any = None,
        extensions_api: Any = None,
        request_timeout: float | None = None,
    ) -> None:
        self.custom_api = custom_api or k8s_client.CustomObjectsApi(api_client)
        self.extensions_api = extensions_api or k8s_client.ApiextensionsV1Api(api_client)
        self.request_timeout = request_timeout

    @classmethod
    def from_config(cls, config: "Config") -> "KubernetesClusterAPI":
        if config.get("kubernetes:in_cluster"):
            k8s_config.load_incluster_config()
        else:
            k8s_config.load_kube_config(
                config_file=config.get("kubernetes:kubeconfig"),
                context=config.get("kubernetes:context"),
            )
        return cls(request_timeout=config.get("kubernetes:request_timeout"))

    def get_object(self, resource: CustomResource, namespace: str, name: str) -> dict[str, Any]:
        return self._call(
            self.custom_api.get_namespaced_custom_object,
            resource.group,
            resource.version,
            namespace,
            resource.plural,
            name,
        )

    def create_object(
        self, resource: CustomResource, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return self._call(
            self.custom_api.create_namespaced_custom_object,
            resource.group,
            resource.version,
            namespace,
            resource.plural,
            body,
            conflict=AlreadyExistsError,
        )

    def replace_object(
        self, resource: CustomResource, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return self._call(
            self.custom_api.replace_namespaced_custom_object,
            resource.group,
            resource.version,
            namespace,
            resource.plural,
            body["metadata"]["name"],
            body,
        )

    def crd_exists(self, name: str) -> bool:
        try:
            self._call(self.extensions_api.read_custom_resource_definition, name)
        except NotFoundError:
            return False
        return True

    def _call(
        self,
        fun: Callable[..., Any],
        *args: Any,
        conflict: type[ClusterAPIError] = ConflictError,
    ) -> Any:
        kwargs: dict[str, Any] = {}
        if self.request_timeout is not None:
            kwargs["_request_timeout"] = self.request_timeout
        try:
            return fun(*args, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, conflict=conflict) from e


def translate_api_exception(
    e: ApiException, conflict: type[ClusterAPIError] = ConflictError
) -> ClusterAPIError:
    reason = status_reason(e)
    message = f"{e.status} {reason}: {status_message(e)}"
    if e.status == 404:
        return NotFoundError(message, status=e.status, reason=reason)
    if e.status == 409:
        if reason == "AlreadyExists":
            return AlreadyExistsError(message, status=e.status, reason=reason)
        return conflict(message, status=e.status, reason=reason)
    return ClusterAPIError(message, status=e.status, reason=reason)


def _status_body(e: ApiException) -> dict[str, Any]:
    if not e.body:
        return {}
    try:
        body = json.loads(e.body)
    except (TypeError, ValueError):
        return {}
    return body if isinstance(body, dict) else {}


def status_reason(e: ApiException) -> str:
    return _status_body(e).get("reason") or e.reason or "Unknown"


def status_message(e: ApiException) -> str:
    return _status_body(e).get("message") or str(e.body or "")


def factory(config: "Config") -> ClusterAPI:
    logger.debug("connecting to the cluster with the kubernetes client")
    return KubernetesClusterAPI.from_config(config)
