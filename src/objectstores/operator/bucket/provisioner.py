"""
Bucket provisioner capability, modelled on lib-bucket-provisioner's api.Provisioner.
"""
import abc
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ...crds.errors import ObjectStoreException
from ..objectstore.resources.constants import RGW_SERVICE_PORT
from ..objectstore.resources.naming import instance_name

# StorageClass parameters naming the ObjectStore serving the bucket
PARAM_OBJECT_STORE_NAME = "objectStoreName"
PARAM_OBJECT_STORE_NAMESPACE = "objectStoreNamespace"
# StorageClass parameter naming an existing bucket: claims get access to it
# instead of a new bucket.
PARAM_BUCKET_NAME = "bucketName"


class BucketProvisioningError(ObjectStoreException):
    """Raised by a provisioner when a bucket operation fails. The claim is retried on the next resync."""
    pass


@dataclass
class BucketOptions:
    claim_name: str
    claim_namespace: str
    bucket_name: str
    reclaim_policy: str = "Delete"
    parameters: Dict[str, str] = field(default_factory=dict)


@dataclass
class ObjectBucket:
    """Connection information handed back to the claim owner."""

    bucket_name: str
    bucket_host: str
    bucket_port: int
    region: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    additional_config: Dict[str, str] = field(default_factory=dict)

    def connection(self) -> Dict[str, Any]:
        return {
            "endpoint": {
                "bucketHost": self.bucket_host,
                "bucketPort": self.bucket_port,
                "bucketName": self.bucket_name,
                "region": self.region,
                "additionalConfig": self.additional_config,
            },
        }

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "ObjectBucket":
        endpoint = manifest.get("spec", {}).get("connection", {}).get("endpoint", {})
        return cls(
            bucket_name=endpoint.get("bucketName", ""),
            bucket_host=endpoint.get("bucketHost", ""),
            bucket_port=int(endpoint.get("bucketPort") or 0),
            region=endpoint.get("region", ""),
            additional_config=endpoint.get("additionalConfig") or {},
        )


class Provisioner(abc.ABC):
    """
    Operations the bucket controller delegates to a storage backend.

    provision/delete manage new buckets, grant/revoke give and take access to
    buckets that already exist.
    """

    def handles(self, parameters: Dict[str, str]) -> bool:
        """Whether claims of a StorageClass with these parameters belong to this provisioner."""
        return True

    @abc.abstractmethod
    def provision(self, options: BucketOptions) -> ObjectBucket:
        ...

    @abc.abstractmethod
    def grant(self, options: BucketOptions) -> ObjectBucket:
        ...

    @abc.abstractmethod
    def delete(self, bucket: ObjectBucket) -> None:
        ...

    @abc.abstractmethod
    def revoke(self, bucket: ObjectBucket) -> None:
        ...


class ObjectStoreProvisioner(Provisioner):
    """Provisions buckets on the gateway of one ObjectStore."""

    def __init__(self, name: str, namespace: str, port: Optional[int] = None):
        self.name = name
        self.namespace = namespace
        self.port = port or RGW_SERVICE_PORT

    @property
    def endpoint_host(self) -> str:
        return f"{instance_name(self.name, self.namespace)}.{self.namespace}.svc"

    def handles(self, parameters: Dict[str, str]) -> bool:
        return (
            parameters.get(PARAM_OBJECT_STORE_NAME) == self.name
            and parameters.get(PARAM_OBJECT_STORE_NAMESPACE, self.namespace) == self.namespace
        )

    def _unsupported(self, operation: str, bucket_name: str) -> BucketProvisioningError:
        # TODO: create an S3 admin user by exec'ing into the gateway pod, then
        # create buckets and per-claim users through it.
        return BucketProvisioningError(
            f"cannot {operation} bucket '{bucket_name}' on {self.endpoint_host}: "
            "the gateway has no admin user for the provisioner yet"
        )

    def provision(self, options: BucketOptions) -> ObjectBucket:
        raise self._unsupported("provision", options.bucket_name)

    def grant(self, options: BucketOptions) -> ObjectBucket:
        raise self._unsupported("grant access to", options.bucket_name)

    def delete(self, bucket: ObjectBucket) -> None:
        raise self._unsupported("delete", bucket.bucket_name)

    def revoke(self, bucket: ObjectBucket) -> None:
        raise self._unsupported("revoke access to", bucket.bucket_name)
