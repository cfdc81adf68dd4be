from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Type, TypeVar

from kubernetes import client

from ..utils.kube import KubernetesConfigurationError, configure_kube_client

from .errors import KubeConfigError

# A generic type for BaseCustomResource subclasses
T = TypeVar("T", bound="BaseCustomResource")


def _get_k8s_api() -> client.CustomObjectsApi:
    """
    Initializes and returns the Kubernetes CustomObjectsApi client.

    This function will raise a KubeConfigError with a helpful message if the
    Kubernetes configuration cannot be loaded.
    """
    try:
        configure_kube_client()
    except KubernetesConfigurationError as exc:
        raise KubeConfigError(
            "Kubernetes configuration not found. Please ensure you have a valid "
            "kubeconfig file or are running in-cluster."
        ) from exc

    return client.CustomObjectsApi()


@dataclass
class ObjectMeta:
    name: str
    namespace: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    uid: Optional[str] = None
    resourceVersion: Optional[str] = None
    finalizers: List[str] = field(default_factory=list)
    deletionTimestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        """
        Constructs an ObjectMeta from a dictionary, ignoring unknown fields.
        This makes it robust to extra metadata from the Kubernetes API.
        """
        known_field_names = {f.name for f in fields(cls)}
        filtered_data = {
            k: v for k, v in data.items() if k in known_field_names and v is not None
        }
        return cls(**filtered_data)


class BaseCustomResource:
    """
    A namespaced custom resource read and patched through CustomObjectsApi.

    API errors (ApiException) propagate unchanged.
    """

    group: str
    version: str
    plural: str

    # These attributes are expected to be defined by subclasses, but are declared
    # here for type-hinting purposes so that generic methods can be type-checked.
    metadata: ObjectMeta
    spec: Dict[str, Any]
    status: Dict[str, Any]

    def __init__(self, api: Optional[client.CustomObjectsApi] = None) -> None:
        self.api = api or _get_k8s_api()

    @classmethod
    def kind(cls) -> str:
        return cls.__name__

    @classmethod
    def _from_data(
        cls: Type[T], data: Dict[str, Any], api: client.CustomObjectsApi
    ) -> T:
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=data.get("spec") or {},
            status=data.get("status") or {},
            api=api,
        )

    @classmethod
    def get(
        cls: Type[T],
        name: str,
        *,
        namespace: str,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> T:
        """Fetches the custom resource. A missing object raises ApiException(404)."""
        if not namespace:
            raise ValueError("Namespace is required for namespaced resources")
        api_instance = api or _get_k8s_api()
        data = api_instance.get_namespaced_custom_object(
            group=cls.group,
            version=cls.version,
            namespace=namespace,
            plural=cls.plural,
            name=name,
        )
        return cls._from_data(data, api_instance)

    def _refresh_from(self, data: Dict[str, Any]) -> None:
        self.metadata = ObjectMeta.from_dict(data["metadata"])
        self.spec = data.get("spec") or {}
        self.status = data.get("status") or {}

    def patch(self: T, patch_body: Dict[str, Any]) -> T:
        """Merge-patches the custom resource in the cluster."""
        patched_obj = self.api.patch_namespaced_custom_object(
            group=self.group,
            version=self.version,
            namespace=self.metadata.namespace,
            plural=self.plural,
            name=self.metadata.name,
            body=patch_body,
        )
        self._refresh_from(patched_obj)
        return self

    def patch_status(self: T, status: Dict[str, Any]) -> T:
        """Patches the status subresource."""
        patched_obj = self.api.patch_namespaced_custom_object_status(
            group=self.group,
            version=self.version,
            namespace=self.metadata.namespace,
            plural=self.plural,
            name=self.metadata.name,
            body={"status": status},
        )
        self._refresh_from(patched_obj)
        return self
