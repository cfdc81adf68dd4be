"""
Controller for ObjectBucketClaims, modelled on lib-bucket-provisioner.

It lists the claims in its scope on a fixed interval, provisions buckets for
unbound claims whose StorageClass names this provisioner and releases them
when the claim goes away. Bucket operations themselves are delegated to a
Provisioner.
"""
import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional

import kopf
from kubernetes import client

from ...crds.const import (
    OBJECTBUCKET_GROUP,
    OBJECTBUCKET_PLURAL_BUCKET,
    OBJECTBUCKET_PLURAL_CLAIM,
    OBJECTBUCKET_VERSION,
)
from ...utils.kube import is_already_exists, is_not_found, to_dict
from .provisioner import (
    PARAM_BUCKET_NAME,
    BucketOptions,
    BucketProvisioningError,
    ObjectBucket,
    Provisioner,
)

CLAIM_FINALIZER = "objectbucket.io/finalizer"
PROVISIONER_ANNOTATION = "objectbucket.io/provisioner"
PHASE_BOUND = "Bound"
RECLAIM_DELETE = "Delete"


def object_bucket_name(claim_namespace: str, claim_name: str) -> str:
    return f"obc-{claim_namespace}-{claim_name}"


def claim_bucket_name(claim: Dict[str, Any], parameters: Dict[str, str]) -> str:
    """
    Name of the bucket backing ``claim``: the existing bucket named by the
    StorageClass, the claim's bucketName, or generateBucketName suffixed with
    the claim uid so retries keep the same name.
    """
    if parameters.get(PARAM_BUCKET_NAME):
        return parameters[PARAM_BUCKET_NAME]
    spec = claim.get("spec", {})
    if spec.get("bucketName"):
        return spec["bucketName"]
    prefix = spec.get("generateBucketName") or claim["metadata"]["name"]
    return f"{prefix}-{claim['metadata']['uid'][:8]}"


def _encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


class BucketProvisionerController:
    """
    Runs the ObjectBucketClaim loop for one provisioner.

    Args:
        provisioner_name: the StorageClass ``provisioner`` this controller answers to
        provisioner: the backend doing the bucket operations
        namespace: claims namespace, "" for all namespaces
    """

    def __init__(
        self,
        provisioner_name: str,
        provisioner: Provisioner,
        namespace: str = "",
        *,
        custom_objects_api: Optional[client.CustomObjectsApi] = None,
        core_v1: Optional[client.CoreV1Api] = None,
        storage_v1: Optional[client.StorageV1Api] = None,
        resync_interval: float = 30,
        logger: Optional[logging.Logger] = None,
    ):
        self.provisioner_name = provisioner_name
        self.provisioner = provisioner
        self.namespace = namespace
        self.custom_objects_api = custom_objects_api or client.CustomObjectsApi()
        self.core_v1 = core_v1 or client.CoreV1Api()
        self.storage_v1 = storage_v1 or client.StorageV1Api()
        self.resync_interval = resync_interval
        self.logger = logger or logging.getLogger(__name__)

    async def run(self, stopped: kopf.DaemonStopped) -> None:
        """
        Blocks until ``stopped`` is set. API errors end the loop and are raised
        to the caller; provisioner errors are logged and retried.
        """
        self.logger.info(
            f"Starting bucket provisioner '{self.provisioner_name}' "
            f"watching {self.namespace or 'all namespaces'}."
        )
        while not stopped:
            await self.sync()
            await stopped.wait(self.resync_interval)
        self.logger.info(f"Bucket provisioner '{self.provisioner_name}' stopped.")

    async def sync(self) -> None:
        """One pass over every claim in scope."""
        claims = await asyncio.to_thread(self._list_claims)
        for claim in claims:
            meta = claim["metadata"]
            try:
                await self.sync_claim(claim)
            except BucketProvisioningError as e:
                self.logger.error(
                    f"Failed to sync ObjectBucketClaim '{meta['namespace']}/{meta['name']}': {e}"
                )

    def _list_claims(self) -> List[Dict[str, Any]]:
        if self.namespace:
            result = self.custom_objects_api.list_namespaced_custom_object(
                group=OBJECTBUCKET_GROUP,
                version=OBJECTBUCKET_VERSION,
                namespace=self.namespace,
                plural=OBJECTBUCKET_PLURAL_CLAIM,
            )
        else:
            result = self.custom_objects_api.list_cluster_custom_object(
                group=OBJECTBUCKET_GROUP,
                version=OBJECTBUCKET_VERSION,
                plural=OBJECTBUCKET_PLURAL_CLAIM,
            )
        return result.get("items", [])

    def _get_storage_class(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            return to_dict(self.storage_v1.read_storage_class(name=name))
        except client.ApiException as e:
            if is_not_found(e):
                return None
            raise

    async def sync_claim(self, claim: Dict[str, Any]) -> None:
        meta = claim["metadata"]
        if meta.get("deletionTimestamp"):
            await self.release(claim)
            return
        if claim.get("status", {}).get("phase") == PHASE_BOUND:
            return

        storage_class_name = claim.get("spec", {}).get("storageClassName")
        if not storage_class_name:
            return
        storage_class = await asyncio.to_thread(self._get_storage_class, storage_class_name)
        if storage_class is None:
            self.logger.warning(
                f"StorageClass '{storage_class_name}' of ObjectBucketClaim "
                f"'{meta['namespace']}/{meta['name']}' not found."
            )
            return
        if not self._storage_class_is_ours(storage_class):
            return

        parameters = storage_class.get("parameters") or {}
        options = BucketOptions(
            claim_name=meta["name"],
            claim_namespace=meta["namespace"],
            bucket_name=claim_bucket_name(claim, parameters),
            reclaim_policy=storage_class.get("reclaimPolicy") or RECLAIM_DELETE,
            parameters=parameters,
        )
        await self.provision(claim, storage_class_name, options)

    def _storage_class_is_ours(self, storage_class: Dict[str, Any]) -> bool:
        if storage_class.get("provisioner") != self.provisioner_name:
            return False
        return self.provisioner.handles(storage_class.get("parameters") or {})

    def _object_bucket_is_ours(self, object_bucket: Dict[str, Any]) -> bool:
        annotations = object_bucket.get("metadata", {}).get("annotations") or {}
        if annotations.get(PROVISIONER_ANNOTATION) != self.provisioner_name:
            return False
        return self.provisioner.handles(
            object_bucket.get("spec", {}).get("additionalState") or {}
        )

    async def provision(
        self, claim: Dict[str, Any], storage_class_name: str, options: BucketOptions
    ) -> None:
        """Provisions (or grants) the bucket of an unbound claim and binds it."""
        meta = claim["metadata"]
        finalizers = meta.get("finalizers") or []
        if CLAIM_FINALIZER not in finalizers:
            await asyncio.to_thread(
                self._patch_claim,
                claim,
                {"metadata": {"finalizers": finalizers + [CLAIM_FINALIZER]}},
            )

        if options.parameters.get(PARAM_BUCKET_NAME):
            bucket = await asyncio.to_thread(self.provisioner.grant, options)
        else:
            bucket = await asyncio.to_thread(self.provisioner.provision, options)

        ob_name = object_bucket_name(options.claim_namespace, options.claim_name)
        object_bucket = {
            "apiVersion": f"{OBJECTBUCKET_GROUP}/{OBJECTBUCKET_VERSION}",
            "kind": "ObjectBucket",
            "metadata": {
                "name": ob_name,
                "annotations": {PROVISIONER_ANNOTATION: self.provisioner_name},
                "finalizers": [CLAIM_FINALIZER],
            },
            "spec": {
                "storageClassName": storage_class_name,
                "reclaimPolicy": options.reclaim_policy,
                # Read back on release, the StorageClass may be gone by then.
                "additionalState": dict(options.parameters),
                "claimRef": {
                    "name": meta["name"],
                    "namespace": meta["namespace"],
                    "uid": meta["uid"],
                },
                "connection": bucket.connection(),
            },
        }
        await asyncio.to_thread(
            self._create_ignoring_conflict, self._create_object_bucket, object_bucket
        )
        await asyncio.to_thread(
            self._create_ignoring_conflict, self._create_secret, self._secret(claim, bucket)
        )
        await asyncio.to_thread(
            self._create_ignoring_conflict, self._create_config_map, self._config_map(claim, bucket)
        )

        await asyncio.to_thread(
            self._patch_claim, claim, {"spec": {"objectBucketName": ob_name}}
        )
        await asyncio.to_thread(self._patch_claim_status, claim, {"phase": PHASE_BOUND})
        self.logger.info(
            f"Bound ObjectBucketClaim '{meta['namespace']}/{meta['name']}' "
            f"to bucket '{bucket.bucket_name}'."
        )

    async def release(self, claim: Dict[str, Any]) -> None:
        """
        Deletes (or revokes access to) the bucket of a deleted claim, then
        lets the claim go. The claim's Secret and ConfigMap are owned by it.

        The reclaim policy and parameters are read from the ObjectBucket, so
        a claim is released even after its StorageClass was changed or
        deleted.
        """
        meta = claim["metadata"]
        if CLAIM_FINALIZER not in (meta.get("finalizers") or []):
            return

        ob_name = object_bucket_name(meta["namespace"], meta["name"])
        object_bucket = await asyncio.to_thread(self._get_object_bucket, ob_name)
        if object_bucket is None:
            # Nothing was provisioned; drop the finalizer unless the claim
            # belongs to another provisioner.
            storage_class_name = claim.get("spec", {}).get("storageClassName")
            storage_class = None
            if storage_class_name:
                storage_class = await asyncio.to_thread(
                    self._get_storage_class, storage_class_name
                )
            if storage_class is not None and not self._storage_class_is_ours(storage_class):
                return
        elif not self._object_bucket_is_ours(object_bucket):
            return
        else:
            spec = object_bucket.get("spec", {})
            parameters = spec.get("additionalState") or {}
            bucket = ObjectBucket.from_manifest(object_bucket)
            granted = bool(parameters.get(PARAM_BUCKET_NAME))
            if granted or spec.get("reclaimPolicy", RECLAIM_DELETE) != RECLAIM_DELETE:
                await asyncio.to_thread(self.provisioner.revoke, bucket)
            else:
                await asyncio.to_thread(self.provisioner.delete, bucket)
            await asyncio.to_thread(self._delete_object_bucket, ob_name)

        await asyncio.to_thread(
            self._patch_claim,
            claim,
            {
                "metadata": {
                    "finalizers": [
                        f for f in meta.get("finalizers", []) if f != CLAIM_FINALIZER
                    ]
                }
            },
        )
        self.logger.info(f"Released ObjectBucketClaim '{meta['namespace']}/{meta['name']}'.")

    def _owner_reference(self, claim: Dict[str, Any]) -> Dict[str, Any]:
        meta = claim["metadata"]
        return {
            "apiVersion": f"{OBJECTBUCKET_GROUP}/{OBJECTBUCKET_VERSION}",
            "kind": "ObjectBucketClaim",
            "name": meta["name"],
            "uid": meta["uid"],
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def _secret(self, claim: Dict[str, Any], bucket: ObjectBucket) -> Dict[str, Any]:
        meta = claim["metadata"]
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": meta["name"],
                "namespace": meta["namespace"],
                "ownerReferences": [self._owner_reference(claim)],
            },
            "type": "Opaque",
            "data": {
                "AWS_ACCESS_KEY_ID": _encode(bucket.access_key_id),
                "AWS_SECRET_ACCESS_KEY": _encode(bucket.secret_access_key),
            },
        }

    def _config_map(self, claim: Dict[str, Any], bucket: ObjectBucket) -> Dict[str, Any]:
        meta = claim["metadata"]
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": meta["name"],
                "namespace": meta["namespace"],
                "ownerReferences": [self._owner_reference(claim)],
            },
            "data": {
                "BUCKET_HOST": bucket.bucket_host,
                "BUCKET_PORT": str(bucket.bucket_port),
                "BUCKET_NAME": bucket.bucket_name,
                "BUCKET_REGION": bucket.region,
            },
        }

    def _create_ignoring_conflict(self, create, body: Dict[str, Any]) -> None:
        # A previous pass may have failed after creating some of the objects.
        try:
            create(body)
        except client.ApiException as e:
            if not is_already_exists(e):
                raise
            self.logger.info(f"{body['kind']} '{body['metadata']['name']}' already exists.")

    def _create_object_bucket(self, body: Dict[str, Any]) -> None:
        self.custom_objects_api.create_cluster_custom_object(
            group=OBJECTBUCKET_GROUP,
            version=OBJECTBUCKET_VERSION,
            plural=OBJECTBUCKET_PLURAL_BUCKET,
            body=body,
        )

    def _get_object_bucket(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            return self.custom_objects_api.get_cluster_custom_object(
                group=OBJECTBUCKET_GROUP,
                version=OBJECTBUCKET_VERSION,
                plural=OBJECTBUCKET_PLURAL_BUCKET,
                name=name,
            )
        except client.ApiException as e:
            if is_not_found(e):
                return None
            raise

    def _delete_object_bucket(self, name: str) -> None:
        # Drop our finalizer first, the ObjectBucket would otherwise stay
        # in Terminating forever.
        try:
            self.custom_objects_api.patch_cluster_custom_object(
                group=OBJECTBUCKET_GROUP,
                version=OBJECTBUCKET_VERSION,
                plural=OBJECTBUCKET_PLURAL_BUCKET,
                name=name,
                body={"metadata": {"finalizers": []}},
            )
            self.custom_objects_api.delete_cluster_custom_object(
                group=OBJECTBUCKET_GROUP,
                version=OBJECTBUCKET_VERSION,
                plural=OBJECTBUCKET_PLURAL_BUCKET,
                name=name,
            )
        except client.ApiException as e:
            if not is_not_found(e):
                raise

    def _create_secret(self, body: Dict[str, Any]) -> None:
        self.core_v1.create_namespaced_secret(
            namespace=body["metadata"]["namespace"], body=body
        )

    def _create_config_map(self, body: Dict[str, Any]) -> None:
        self.core_v1.create_namespaced_config_map(
            namespace=body["metadata"]["namespace"], body=body
        )

    def _patch_claim(self, claim: Dict[str, Any], body: Dict[str, Any]) -> None:
        meta = claim["metadata"]
        self.custom_objects_api.patch_namespaced_custom_object(
            group=OBJECTBUCKET_GROUP,
            version=OBJECTBUCKET_VERSION,
            namespace=meta["namespace"],
            plural=OBJECTBUCKET_PLURAL_CLAIM,
            name=meta["name"],
            body=body,
        )

    def _patch_claim_status(self, claim: Dict[str, Any], status: Dict[str, Any]) -> None:
        meta = claim["metadata"]
        self.custom_objects_api.patch_namespaced_custom_object_status(
            group=OBJECTBUCKET_GROUP,
            version=OBJECTBUCKET_VERSION,
            namespace=meta["namespace"],
            plural=OBJECTBUCKET_PLURAL_CLAIM,
            name=meta["name"],
            body={"status": status},
        )


def new_provisioner(
    provisioner_name: str,
    provisioner: Provisioner,
    namespace: str = "",
    **kwargs: Any,
) -> BucketProvisionerController:
    """Builds the controller for ``provisioner``; call ``run`` to start it."""
    return BucketProvisionerController(provisioner_name, provisioner, namespace, **kwargs)
