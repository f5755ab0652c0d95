from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Protocol

import urllib3
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from .patch import create_merge_patch
from .template import object_name, object_namespace

LOGGER = logging.getLogger("load_simulator.session")

POOL_MAXSIZE_DEFAULT = 10
MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


class ConnectError(Exception):
    """Raised when a session to the API server cannot be established."""


class ApiError(Exception):
    """An API call failed with something other than an expected outcome."""

    def __init__(self, message: str, status: int | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class AlreadyExistsError(ApiError):
    pass


class NotFoundError(ApiError):
    pass


class ApiSession(Protocol):
    """Operations a runner needs from the API server."""

    def create(self, obj: dict[str, Any]) -> dict[str, Any]: ...

    def get(self, name: str, namespace: str | None = None) -> dict[str, Any]: ...

    def patch(self, obj: dict[str, Any], baseline: dict[str, Any]) -> dict[str, Any] | None: ...

    def delete(self, obj: dict[str, Any]) -> None: ...

    def create_namespace(self, name: str) -> None: ...

    def delete_namespace(self, name: str) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class SessionParams:
    kubeconfig: str | None = None
    context: str | None = None
    # Test clusters are short-lived and usually self-signed.
    verify_ssl: bool = False
    pool_maxsize: int = POOL_MAXSIZE_DEFAULT


def _api_error(action: str, exc: ApiException) -> ApiError:
    message = f"{action}: {exc.status} {exc.reason}"
    if exc.status == 409:
        return AlreadyExistsError(message, exc.status, exc.reason)
    if exc.status == 404:
        return NotFoundError(message, exc.status, exc.reason)
    return ApiError(message, exc.status, exc.reason)


@contextlib.contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except ApiException as exc:
        raise _api_error(action, exc) from exc
    except urllib3.exceptions.HTTPError as exc:
        raise ApiError(f"{action}: {exc}") from exc


def build_configuration(params: SessionParams) -> client.Configuration:
    configuration = client.Configuration()
    if params.kubeconfig:
        config.load_kube_config(
            config_file=params.kubeconfig,
            context=params.context,
            client_configuration=configuration,
        )
    else:
        config.load_incluster_config(client_configuration=configuration)

    configuration.verify_ssl = params.verify_ssl
    if not params.verify_ssl:
        configuration.assert_hostname = False
    configuration.connection_pool_maxsize = params.pool_maxsize
    return configuration


def connect(params: SessionParams, template: dict[str, Any]) -> "KubeSession":
    """Open a session able to manage objects shaped like ``template``."""
    try:
        configuration = build_configuration(params)
    except (ConfigException, OSError) as exc:
        raise ConnectError(f"failed to load client configuration: {exc}") from exc

    if not params.verify_ssl:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    api_client = client.ApiClient(configuration)
    try:
        dynamic = DynamicClient(api_client)
        resource = dynamic.resources.get(
            api_version=template["apiVersion"],
            kind=template["kind"],
        )
    except ResourceNotFoundError as exc:
        api_client.close()
        raise ConnectError(
            f"server does not serve {template['apiVersion']}/{template['kind']}"
        ) from exc
    except (ApiException, urllib3.exceptions.HTTPError) as exc:
        api_client.close()
        raise ConnectError(f"failed to create client: {exc}") from exc

    return KubeSession(api_client, resource)


class KubeSession:
    """Create/get/patch/delete access to one resource kind plus namespaces."""

    def __init__(self, api_client: client.ApiClient, resource: Any) -> None:
        self._api_client = api_client
        self._resource = resource
        self._core = client.CoreV1Api(api_client)

    def _scope(self, obj: dict[str, Any]) -> str | None:
        if not self._resource.namespaced:
            return None
        return object_namespace(obj) or None

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        with _translate_errors(f"create {self._resource.kind} {object_name(obj)!r}"):
            created = self._resource.create(body=obj, namespace=self._scope(obj))
        return created.to_dict()

    def get(self, name: str, namespace: str | None = None) -> dict[str, Any]:
        if not self._resource.namespaced:
            namespace = None
        with _translate_errors(f"get {self._resource.kind} {name!r}"):
            current = self._resource.get(name=name, namespace=namespace)
        return current.to_dict()

    def patch(self, obj: dict[str, Any], baseline: dict[str, Any]) -> dict[str, Any] | None:
        body = create_merge_patch(baseline, obj)
        if not body:
            return None
        with _translate_errors(f"patch {self._resource.kind} {object_name(obj)!r}"):
            patched = self._resource.patch(
                body=body,
                name=object_name(obj),
                namespace=self._scope(obj),
                content_type=MERGE_PATCH_CONTENT_TYPE,
            )
        return patched.to_dict()

    def delete(self, obj: dict[str, Any]) -> None:
        with _translate_errors(f"delete {self._resource.kind} {object_name(obj)!r}"):
            self._resource.delete(name=object_name(obj), namespace=self._scope(obj))

    def create_namespace(self, name: str) -> None:
        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
        with _translate_errors(f"create namespace {name!r}"):
            self._core.create_namespace(body=body)

    def delete_namespace(self, name: str) -> None:
        with _translate_errors(f"delete namespace {name!r}"):
            self._core.delete_namespace(name=name)

    def close(self) -> None:
        self._api_client.close()


__all__ = [
    "AlreadyExistsError",
    "ApiError",
    "ApiSession",
    "ConnectError",
    "KubeSession",
    "NotFoundError",
    "SessionParams",
    "build_configuration",
    "connect",
]
