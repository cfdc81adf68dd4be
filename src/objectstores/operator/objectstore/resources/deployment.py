from typing import Any, Dict, List

from ....crds.errors import InvalidObjectStoreError
from ....crds.objectstore import ObjectStore
from ....utils.kube import merge_owned
from .constants import (
    CEPH_LIB,
    CHOWN_CONTAINER_NAME,
    DAEMON_BINARY,
    DAEMON_CONTAINER_NAME,
    DAEMON_GID,
    DAEMON_UID,
    DATA_DIRECTORY,
    DATA_VOLUME_NAME,
    POD_NAME_ENV_VAR,
)
from .naming import (
    container_env_var_reference,
    default_daemon_flags,
    get_labels,
    instance_name,
    new_flag,
    stable_hash,
)


def _field_ref(field_path: str) -> Dict[str, Any]:
    return {"fieldRef": {"fieldPath": field_path}}


def daemon_env_vars(image: str) -> List[Dict[str, Any]]:
    """Environment variables used by the gateway daemon."""
    return [
        {"name": "CONTAINER_IMAGE", "value": image},
        {"name": POD_NAME_ENV_VAR, "valueFrom": _field_ref("metadata.name")},
        {"name": "POD_NAMESPACE", "valueFrom": _field_ref("metadata.namespace")},
        {"name": "NODE_NAME", "valueFrom": _field_ref("spec.nodeName")},
        {"name": "CEPH_LIB", "value": CEPH_LIB},
    ]


def data_volume(claim_name: str) -> Dict[str, Any]:
    return {
        "name": DATA_VOLUME_NAME,
        "persistentVolumeClaim": {"claimName": claim_name},
    }


def data_volume_mount() -> Dict[str, Any]:
    return {"name": DATA_VOLUME_NAME, "mountPath": DATA_DIRECTORY}


def init_container_security_context() -> Dict[str, Any]:
    return {"privileged": True, "runAsUser": 0}


def chown_init_container(image: str) -> Dict[str, Any]:
    """
    Init container that chowns the data directory to the daemon user.

    Some CSI drivers do not honour fsGroup, and a chown in a postStart hook
    races with the daemon start, so it has to happen before the daemon
    container runs.
    """
    return {
        "name": CHOWN_CONTAINER_NAME,
        "image": image,
        "command": ["chown"],
        "args": [
            "--verbose",
            "--recursive",
            f"{DAEMON_UID}:{DAEMON_GID}",
            DATA_DIRECTORY,
        ],
        "volumeMounts": [data_volume_mount()],
        "securityContext": init_container_security_context(),
    }


def build_daemon_container(objectstore: ObjectStore) -> Dict[str, Any]:
    """Builds the gateway daemon container, running in the foreground."""
    image = objectstore.image
    if not image:
        return {}

    pod_name = container_env_var_reference(POD_NAME_ENV_VAR)
    return {
        "name": DAEMON_CONTAINER_NAME,
        "image": image,
        "command": [DAEMON_BINARY],
        "args": default_daemon_flags()
        + [
            # The id ends up in the admin socket path, hash it to keep it short.
            # NOTE: this hashes the unexpanded "$(POD_NAME)" reference, so every
            # pod gets the same id.
            new_flag("id", stable_hash(pod_name)),
            new_flag("host", pod_name),
            new_flag("librados sqlite data dir", DATA_DIRECTORY),
            new_flag("debug rgw", "15"),
        ],
        "volumeMounts": [data_volume_mount()],
        "env": daemon_env_vars(image),
    }


def build_pod_template(objectstore: ObjectStore) -> Dict[str, Any]:
    """
    Builds the pod template of the gateway Deployment.

    Raises:
        InvalidObjectStoreError: if the daemon container cannot be built.
    """
    daemon_container = build_daemon_container(objectstore)
    if not daemon_container:
        raise InvalidObjectStoreError(
            f"got empty container for RGW daemon of ObjectStore '{objectstore.name}'"
        )

    name = instance_name(objectstore.name, objectstore.namespace)
    return {
        "metadata": {
            "name": name,
            "labels": get_labels(objectstore.name),
        },
        "spec": {
            "initContainers": [chown_init_container(objectstore.image)],
            "containers": [daemon_container],
            "restartPolicy": "Always",
            "securityContext": {
                "runAsUser": DAEMON_UID,
                "runAsGroup": DAEMON_GID,
                "fsGroup": DAEMON_GID,
            },
            "volumes": [data_volume(name)],
        },
    }


def build_deployment(objectstore: ObjectStore) -> Dict[str, Any]:
    """Builds the identity of the gateway Deployment. The spec is filled by apply_deployment_spec."""
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": instance_name(objectstore.name, objectstore.namespace),
            "namespace": objectstore.namespace,
            "labels": get_labels(objectstore.name),
        },
        "spec": {},
    }


def apply_deployment_spec(deployment: Dict[str, Any], objectstore: ObjectStore) -> None:
    """
    Writes the Deployment spec derived from ``objectstore`` over the current
    one. Fields the API server defaulted are kept, so an unchanged
    ObjectStore leaves a fetched Deployment as it was.

    A single replica backed by a RWO volume: the old pod must be gone before
    the new one starts, hence maxSurge 0.
    """
    desired = {
        "replicas": 1,
        "selector": {"matchLabels": get_labels(objectstore.name)},
        "template": build_pod_template(objectstore),
        "strategy": {
            "type": "RollingUpdate",
            "rollingUpdate": {"maxUnavailable": 1, "maxSurge": 0},
        },
    }
    merge_owned(deployment.setdefault("spec", {}), desired)
