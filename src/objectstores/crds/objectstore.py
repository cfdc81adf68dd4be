from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kubernetes import client

from .base import BaseCustomResource, ObjectMeta
from .const import CRD_GROUP, CRD_KIND, CRD_PLURAL_OBJECTSTORE, CRD_VERSION
from .errors import InvalidObjectStoreError


@dataclass
class ObjectStore(BaseCustomResource):
    """
    A user-declared object store gateway.

    spec:
      image: container image of the gateway daemon (required)
      gateway.port: listening port, 0 means not exposed
      volumeClaimTemplate: PersistentVolumeClaim used for the daemon data (required)
    status:
      phase: written by the operator only
    """

    group = CRD_GROUP
    version = CRD_VERSION
    plural = CRD_PLURAL_OBJECTSTORE

    metadata: ObjectMeta
    spec: Dict[str, Any]
    status: Dict[str, Any] = field(default_factory=dict, init=False)

    def __init__(
        self,
        metadata: ObjectMeta,
        spec: Dict[str, Any],
        status: Optional[Dict[str, Any]] = None,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        super().__init__(api)
        self.metadata = metadata
        self.spec = spec
        self.status = status or {}

    @classmethod
    def kind(cls) -> str:
        return CRD_KIND

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace or ""

    @property
    def image(self) -> str:
        return self.spec.get("image") or ""

    @property
    def gateway_port(self) -> int:
        gateway = self.spec.get("gateway") or {}
        return int(gateway.get("port") or 0)

    @property
    def volume_claim_template(self) -> Optional[Dict[str, Any]]:
        return self.spec.get("volumeClaimTemplate")

    @property
    def phase(self) -> str:
        return self.status.get("phase", "")

    @property
    def is_deleting(self) -> bool:
        return bool(self.metadata.deletionTimestamp)

    @property
    def finalizers(self) -> List[str]:
        return list(self.metadata.finalizers)

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def validate_volume_claim_template(self) -> None:
        """
        Raises InvalidObjectStoreError if there is no claim template to build
        the PVC from. A missing image is caught when the pod template is built.
        """
        template = self.volume_claim_template
        if not isinstance(template, dict) or not isinstance(template.get("spec"), dict):
            raise InvalidObjectStoreError(
                f"ObjectStore '{self.namespace}/{self.name}' has no "
                "spec.volumeClaimTemplate.spec"
            )

    def owner_body(self) -> Dict[str, Any]:
        """The minimal body needed to build owner references to this object."""
        return {
            "apiVersion": f"{self.group}/{self.version}",
            "kind": self.kind(),
            "metadata": {
                "name": self.metadata.name,
                "namespace": self.metadata.namespace,
                "uid": self.metadata.uid,
            },
        }

    def _set_finalizers(self, finalizers: List[str]) -> "ObjectStore":
        # resourceVersion turns the merge patch into a conditional write, a
        # stale copy gets a 409 instead of overwriting someone else's change.
        return self.patch(
            {
                "metadata": {
                    "finalizers": finalizers,
                    "resourceVersion": self.metadata.resourceVersion,
                }
            }
        )

    def add_finalizer(self, finalizer: str) -> bool:
        """Adds and persists the finalizer. Returns False if it was already there."""
        if self.has_finalizer(finalizer):
            return False
        self._set_finalizers(self.finalizers + [finalizer])
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Removes and persists the finalizer. Returns False if it was absent."""
        if not self.has_finalizer(finalizer):
            return False
        self._set_finalizers([f for f in self.finalizers if f != finalizer])
        return True
