from typing import Any, Dict

from ....crds.objectstore import ObjectStore
from .constants import RGW_INTERNAL_PORT, RGW_PORT_NAME, RGW_SERVICE_PORT
from .naming import get_labels, instance_name


def build_service(objectstore: ObjectStore) -> Dict[str, Any]:
    """Builds the identity of the gateway Service. The spec is filled by apply_service_spec."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": instance_name(objectstore.name, objectstore.namespace),
            "namespace": objectstore.namespace,
            "labels": get_labels(objectstore.name),
        },
        "spec": {},
    }


def add_port(service: Dict[str, Any], name: str, port: int, target_port: int) -> None:
    """Appends a TCP port mapping, unless one of the two ports is 0."""
    if port == 0 or target_port == 0:
        return
    ports = service.setdefault("spec", {}).setdefault("ports", [])
    ports.append(
        {
            "name": name,
            "port": port,
            "targetPort": target_port,
            "protocol": "TCP",
        }
    )


def apply_service_spec(service: Dict[str, Any], objectstore: ObjectStore) -> None:
    """
    Sets the selector and the http port on ``service``.

    Fields assigned by the API server (clusterIP, type, ...) are left alone.
    """
    spec = service.setdefault("spec", {})
    spec["selector"] = get_labels(objectstore.name)
    spec["ports"] = []
    add_port(service, RGW_PORT_NAME, RGW_SERVICE_PORT, RGW_INTERNAL_PORT)
