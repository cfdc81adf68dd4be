"""
Shared helpers for configuring and talking to the Kubernetes API.
"""
from __future__ import annotations

import copy
import enum
import functools
import logging
from typing import Any, Callable, Dict, Literal, Optional, Tuple

import kopf
from kubernetes import client, config as kube_config


class KubernetesConfigurationError(RuntimeError):
    """Raised when the Kubernetes client cannot be configured."""


def configure_kube_client(
    logger: Optional[logging.Logger] = None,
) -> Literal["in-cluster", "kubeconfig"]:
    """
    Configure the Kubernetes client, preferring in-cluster credentials when available.

    Args:
        logger: Logger used to emit informational/error messages. If omitted a
            module-level logger will be used.

    Returns:
        A string describing the configuration source used.

    Raises:
        KubernetesConfigurationError: If the client could not be configured.
    """

    effective_logger = logger or logging.getLogger(__name__)

    try:
        kube_config.load_incluster_config()
        effective_logger.info("Using in-cluster Kubernetes configuration.")
        return "in-cluster"
    except kube_config.ConfigException as incluster_error:
        try:
            kube_config.load_kube_config()
            effective_logger.info("Using local kubeconfig.")
            return "kubeconfig"
        except kube_config.ConfigException as kubeconfig_error:
            message = (
                "Unable to configure Kubernetes client using either "
                "in-cluster credentials or the default kubeconfig."
            )
            effective_logger.error(message)
            effective_logger.debug(
                "In-cluster configuration error: %s",
                incluster_error,
            )
            effective_logger.debug(
                "Default kubeconfig error: %s",
                kubeconfig_error,
            )
            raise KubernetesConfigurationError(message) from kubeconfig_error


class OperationResult(str, enum.Enum):
    """Outcome of a create-or-update call."""

    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"


def is_not_found(exc: Exception) -> bool:
    return isinstance(exc, client.ApiException) and exc.status == 404


def is_already_exists(exc: Exception) -> bool:
    return isinstance(exc, client.ApiException) and exc.status == 409


@functools.lru_cache(maxsize=None)
def _serializer() -> client.ApiClient:
    return client.ApiClient()


def to_dict(obj: Any) -> Dict[str, Any]:
    """
    Converts a kubernetes client model into a plain camelCase dictionary.
    Dictionaries are passed through unchanged.
    """
    return _serializer().sanitize_for_serialization(obj)


def set_controller_reference(owner: Dict[str, Any], manifest: Dict[str, Any]) -> None:
    """
    Marks ``owner`` as the controlling owner of ``manifest``.

    The garbage collector deletes the manifest's object once the owner is gone.
    Calling this again with the same owner is a no-op.
    """
    kopf.append_owner_reference(
        manifest, owner=owner, controller=True, block_owner_deletion=True
    )


def _same_items(current: Any, desired: Any) -> bool:
    return (
        isinstance(current, list)
        and len(current) == len(desired)
        and all(
            isinstance(c, dict) and isinstance(d, dict) and c.get("name") == d.get("name")
            for c, d in zip(current, desired)
        )
    )


def merge_owned(current: Dict[str, Any], desired: Dict[str, Any]) -> None:
    """
    Writes the fields of ``desired`` into ``current`` in place, keeping every
    field of ``current`` that ``desired`` does not mention.

    Fields the API server fills in with defaults therefore survive, and a
    manifest whose owned fields already match is left equal to what was read.
    Lists of dicts are merged item by item when both sides list the same
    names in the same order; any other list is replaced as a whole.
    """
    for key, value in desired.items():
        existing = current.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            merge_owned(existing, value)
        elif isinstance(value, list) and _same_items(existing, value):
            for existing_item, item in zip(existing, value):
                merge_owned(existing_item, item)
        else:
            current[key] = copy.deepcopy(value)


MutateFn = Callable[[Dict[str, Any]], None]


class ClusterClient:
    """
    Typed access to the namespaced resources the operator manages.

    Every method is a single blocking round trip against the API server.
    Errors are never retried here; they propagate as ``ApiException``.
    Dependent resources are removed by the garbage collector through their
    owner references, so there is no delete.
    """

    def __init__(
        self,
        core_v1: Optional[client.CoreV1Api] = None,
        apps_v1: Optional[client.AppsV1Api] = None,
    ) -> None:
        self.core_v1 = core_v1 or client.CoreV1Api()
        self.apps_v1 = apps_v1 or client.AppsV1Api()

    def _methods(self, kind: str) -> Dict[str, Callable[..., Any]]:
        if kind == "PersistentVolumeClaim":
            return {
                "read": self.core_v1.read_namespaced_persistent_volume_claim,
                "create": self.core_v1.create_namespaced_persistent_volume_claim,
                "replace": self.core_v1.replace_namespaced_persistent_volume_claim,
            }
        if kind == "Service":
            return {
                "read": self.core_v1.read_namespaced_service,
                "create": self.core_v1.create_namespaced_service,
                "replace": self.core_v1.replace_namespaced_service,
            }
        if kind == "Deployment":
            return {
                "read": self.apps_v1.read_namespaced_deployment,
                "create": self.apps_v1.create_namespaced_deployment,
                "replace": self.apps_v1.replace_namespaced_deployment,
            }
        raise ValueError(f"Unsupported kind '{kind}'")

    def get(self, kind: str, name: str, namespace: str) -> Dict[str, Any]:
        obj = self._methods(kind)["read"](name=name, namespace=namespace)
        return to_dict(obj)

    def create(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        created = self._methods(manifest["kind"])["create"](
            namespace=manifest["metadata"]["namespace"], body=manifest
        )
        return to_dict(created)

    def replace(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        metadata = manifest["metadata"]
        replaced = self._methods(manifest["kind"])["replace"](
            name=metadata["name"], namespace=metadata["namespace"], body=manifest
        )
        return to_dict(replaced)

    def create_or_update(
        self, manifest: Dict[str, Any], mutate: MutateFn
    ) -> Tuple[OperationResult, Dict[str, Any]]:
        """
        Fetches the object named by ``manifest`` (or starts from ``manifest``
        itself when it does not exist), applies ``mutate`` in place and writes
        the result back only when something changed.

        The replace carries the fetched resourceVersion, so a concurrent
        writer makes it fail with a 409 instead of being overwritten.
        """
        kind = manifest["kind"]
        metadata = manifest["metadata"]
        try:
            current = self.get(kind, metadata["name"], metadata["namespace"])
        except client.ApiException as e:
            if not is_not_found(e):
                raise
            current = None

        if current is None:
            desired = copy.deepcopy(manifest)
            mutate(desired)
            return OperationResult.CREATED, self.create(desired)

        # Typed reads may come back without apiVersion/kind; the body is sent
        # back as-is on replace.
        current.setdefault("apiVersion", manifest.get("apiVersion"))
        current.setdefault("kind", kind)
        desired = copy.deepcopy(current)
        mutate(desired)
        if desired == current:
            return OperationResult.UNCHANGED, current
        return OperationResult.UPDATED, self.replace(desired)
