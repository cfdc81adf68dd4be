"""
In-memory stand-ins for the Kubernetes API groups used by the operator.

Every call is recorded in ``FakeKube.calls`` so tests can assert what the
operator did (and did not do) against the cluster.
"""
import copy
import uuid
from typing import Any, Dict, List, Optional, Tuple

from kubernetes import client

from objectstores.crds.base import ObjectMeta
from objectstores.crds.const import CRD_GROUP, CRD_KIND, CRD_PLURAL_OBJECTSTORE, CRD_VERSION
from objectstores.crds.objectstore import ObjectStore
from objectstores.utils.kube import ClusterClient

Key = Tuple[str, str, str]

DEFAULT_IMAGE = "quay.io/ceph/daemon-base:latest-sqlite"


def build_objectstore_spec(
    image: str = DEFAULT_IMAGE,
    port: int = 8080,
    storage: str = "10Gi",
    storage_class: Optional[str] = "standard",
    access_modes: Optional[List[str]] = None,
) -> Dict[str, Any]:
    template_spec: Dict[str, Any] = {
        "accessModes": access_modes or ["ReadWriteOnce"],
        "resources": {"requests": {"storage": storage}},
    }
    if storage_class:
        template_spec["storageClassName"] = storage_class
    spec: Dict[str, Any] = {
        "image": image,
        "volumeClaimTemplate": {"spec": template_spec},
    }
    if port:
        spec["gateway"] = {"port": port}
    return spec


def build_objectstore_manifest(
    name: str = "store",
    namespace: str = "default",
    spec: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
        "kind": CRD_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec if spec is not None else build_objectstore_spec(),
    }


def make_objectstore(
    name: str = "store",
    namespace: str = "default",
    spec: Optional[Dict[str, Any]] = None,
    api: Any = None,
) -> ObjectStore:
    """An ObjectStore that never talks to a cluster unless given an api."""
    from unittest.mock import MagicMock

    return ObjectStore(
        metadata=ObjectMeta(name=name, namespace=namespace, uid="1234-uid"),
        spec=spec if spec is not None else build_objectstore_spec(),
        api=api or MagicMock(),
    )


def _api_exception(status: int, reason: str) -> client.ApiException:
    return client.ApiException(status=status, reason=reason)


def merge_patch(target: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """RFC 7386 JSON merge patch."""
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            merge_patch(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


class FakeKube:
    """A tiny API server: objects keyed by (kind or plural, namespace, name)."""

    def __init__(self) -> None:
        self.objects: Dict[Key, Dict[str, Any]] = {}
        self.calls: List[str] = []
        # method name -> exception raised the next time it is called
        self.failures: Dict[str, Exception] = {}
        self._resource_version = 0
        self.core_v1 = FakeCoreV1Api(self)
        self.apps_v1 = FakeAppsV1Api(self)
        self.storage_v1 = FakeStorageV1Api(self)
        self.custom_objects_api = FakeCustomObjectsApi(self)

    def cluster(self) -> ClusterClient:
        return ClusterClient(core_v1=self.core_v1, apps_v1=self.apps_v1)

    def record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures.pop(method)

    def calls_starting_with(self, *prefixes: str) -> List[str]:
        return [c for c in self.calls if c.startswith(prefixes)]

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def put(self, kind: str, namespace: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Stores ``obj`` directly, bypassing the API (test setup)."""
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("uid", str(uuid.uuid4()))
        meta["resourceVersion"] = self._next_resource_version()
        self.objects[(kind, namespace, meta["name"])] = obj
        return copy.deepcopy(obj)

    def read(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        obj = self.get(kind, namespace, name)
        if obj is None:
            raise _api_exception(404, "Not Found")
        return obj

    def create(self, kind: str, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        if (kind, namespace, name) in self.objects:
            raise _api_exception(409, "AlreadyExists")
        obj = copy.deepcopy(body)
        if kind == "Service":
            obj.setdefault("spec", {}).setdefault("clusterIP", "10.96.0.10")
        return self.put(kind, namespace, obj)

    def replace(self, kind: str, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        current = self.read(kind, namespace, name)
        rv = body.get("metadata", {}).get("resourceVersion")
        if rv and rv != current["metadata"]["resourceVersion"]:
            raise _api_exception(409, "Conflict")
        obj = copy.deepcopy(body)
        obj["metadata"]["uid"] = current["metadata"]["uid"]
        return self.put(kind, namespace, obj)

    def patch(self, kind: str, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        current = self.read(kind, namespace, name)
        body = copy.deepcopy(body)
        rv = body.get("metadata", {}).pop("resourceVersion", None)
        if rv and rv != current["metadata"]["resourceVersion"]:
            raise _api_exception(409, "Conflict")
        merged = merge_patch(current, body)
        meta = merged["metadata"]
        if meta.get("deletionTimestamp") and not meta.get("finalizers"):
            # Last finalizer gone, the API server completes the deletion.
            del self.objects[(kind, namespace, name)]
            return merged
        return self.put(kind, namespace, merged)


def apply_deployment_defaults(deployment: Dict[str, Any]) -> None:
    """Fills in the fields the API server defaults on a Deployment."""
    spec = deployment.setdefault("spec", {})
    spec.setdefault("progressDeadlineSeconds", 600)
    spec.setdefault("revisionHistoryLimit", 10)
    pod_spec = spec.setdefault("template", {}).setdefault("spec", {})
    pod_spec.setdefault("dnsPolicy", "ClusterFirst")
    pod_spec.setdefault("schedulerName", "default-scheduler")
    pod_spec.setdefault("terminationGracePeriodSeconds", 30)
    for container in pod_spec.get("initContainers", []) + pod_spec.get("containers", []):
        container.setdefault("terminationMessagePath", "/dev/termination-log")
        container.setdefault("terminationMessagePolicy", "File")
        container.setdefault("imagePullPolicy", "IfNotPresent")
        for env in container.get("env", []):
            field_ref = env.get("valueFrom", {}).get("fieldRef")
            if field_ref is not None:
                field_ref.setdefault("apiVersion", "v1")


class DefaultingFakeKube(FakeKube):
    """A FakeKube that defaults Deployments on write, like a real API server."""

    def create(self, kind: str, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if kind == "Deployment":
            body = copy.deepcopy(body)
            apply_deployment_defaults(body)
        return super().create(kind, namespace, body)

    def replace(self, kind: str, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if kind == "Deployment":
            body = copy.deepcopy(body)
            apply_deployment_defaults(body)
        return super().replace(kind, namespace, name, body)


class FakeCoreV1Api:
    def __init__(self, kube: FakeKube) -> None:
        self.kube = kube

    def read_namespaced_persistent_volume_claim(self, name, namespace):
        self.kube.record("read_namespaced_persistent_volume_claim")
        return self.kube.read("PersistentVolumeClaim", namespace, name)

    def create_namespaced_persistent_volume_claim(self, namespace, body):
        self.kube.record("create_namespaced_persistent_volume_claim")
        return self.kube.create("PersistentVolumeClaim", namespace, body)

    def replace_namespaced_persistent_volume_claim(self, name, namespace, body):
        self.kube.record("replace_namespaced_persistent_volume_claim")
        return self.kube.replace("PersistentVolumeClaim", namespace, name, body)

    def read_namespaced_service(self, name, namespace):
        self.kube.record("read_namespaced_service")
        return self.kube.read("Service", namespace, name)

    def create_namespaced_service(self, namespace, body):
        self.kube.record("create_namespaced_service")
        return self.kube.create("Service", namespace, body)

    def replace_namespaced_service(self, name, namespace, body):
        self.kube.record("replace_namespaced_service")
        return self.kube.replace("Service", namespace, name, body)

    def create_namespaced_secret(self, namespace, body):
        self.kube.record("create_namespaced_secret")
        return self.kube.create("Secret", namespace, body)

    def create_namespaced_config_map(self, namespace, body):
        self.kube.record("create_namespaced_config_map")
        return self.kube.create("ConfigMap", namespace, body)


class FakeAppsV1Api:
    def __init__(self, kube: FakeKube) -> None:
        self.kube = kube

    def read_namespaced_deployment(self, name, namespace):
        self.kube.record("read_namespaced_deployment")
        return self.kube.read("Deployment", namespace, name)

    def create_namespaced_deployment(self, namespace, body):
        self.kube.record("create_namespaced_deployment")
        return self.kube.create("Deployment", namespace, body)

    def replace_namespaced_deployment(self, name, namespace, body):
        self.kube.record("replace_namespaced_deployment")
        return self.kube.replace("Deployment", namespace, name, body)


class FakeStorageV1Api:
    def __init__(self, kube: FakeKube) -> None:
        self.kube = kube

    def read_storage_class(self, name):
        self.kube.record("read_storage_class")
        return self.kube.read("StorageClass", "", name)


class FakeCustomObjectsApi:
    def __init__(self, kube: FakeKube) -> None:
        self.kube = kube

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        self.kube.record("get_namespaced_custom_object")
        return self.kube.read(plural, namespace, name)

    def list_namespaced_custom_object(self, group, version, namespace, plural):
        self.kube.record("list_namespaced_custom_object")
        items = [
            copy.deepcopy(obj)
            for (kind, ns, _), obj in sorted(self.kube.objects.items())
            if kind == plural and ns == namespace
        ]
        return {"items": items}

    def list_cluster_custom_object(self, group, version, plural):
        self.kube.record("list_cluster_custom_object")
        items = [
            copy.deepcopy(obj)
            for (kind, _, _), obj in sorted(self.kube.objects.items())
            if kind == plural
        ]
        return {"items": items}

    def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        self.kube.record("create_namespaced_custom_object")
        return self.kube.create(plural, namespace, body)

    def patch_namespaced_custom_object(self, group, version, namespace, plural, name, body):
        self.kube.record("patch_namespaced_custom_object")
        return self.kube.patch(plural, namespace, name, body)

    def patch_namespaced_custom_object_status(
        self, group, version, namespace, plural, name, body
    ):
        self.kube.record("patch_namespaced_custom_object_status")
        return self.kube.patch(plural, namespace, name, {"status": body["status"]})

    def create_cluster_custom_object(self, group, version, plural, body):
        self.kube.record("create_cluster_custom_object")
        return self.kube.create(plural, "", body)

    def get_cluster_custom_object(self, group, version, plural, name):
        self.kube.record("get_cluster_custom_object")
        return self.kube.read(plural, "", name)

    def patch_cluster_custom_object(self, group, version, plural, name, body):
        self.kube.record("patch_cluster_custom_object")
        return self.kube.patch(plural, "", name, body)

    def delete_cluster_custom_object(self, group, version, plural, name):
        self.kube.record("delete_cluster_custom_object")
        self.kube.read(plural, "", name)
        del self.kube.objects[(plural, "", name)]
        return {}


class FakeStopped:
    """Mimics kopf.DaemonStopped: falsy until ``stop_after`` waits happened."""

    def __init__(self, stop_after: int = 1) -> None:
        self.stop_after = stop_after
        self.waits: List[float] = []

    def __bool__(self) -> bool:
        return len(self.waits) >= self.stop_after

    async def wait(self, timeout: Optional[float] = None) -> bool:
        self.waits.append(timeout or 0)
        return bool(self)


def put_objectstore(kube: FakeKube, manifest: Dict[str, Any]) -> Dict[str, Any]:
    meta = manifest["metadata"]
    return kube.put(CRD_PLURAL_OBJECTSTORE, meta["namespace"], manifest)
