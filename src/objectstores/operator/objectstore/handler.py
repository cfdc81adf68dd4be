import logging
from typing import Any

import kopf
from kubernetes import client

from ..bucket.controller import new_provisioner
from ..bucket.provisioner import ObjectStoreProvisioner
from ..config import config as operator_config
from .reconciler import reconcile_object_store
from ...crds.const import CRD_GROUP, CRD_VERSION, CRD_PLURAL_OBJECTSTORE
from ...crds.errors import InvalidObjectStoreError, ReconcileError

# Delay before retrying an ObjectStore whose spec is unusable. It keeps
# failing until the user edits it, no point in kopf's short default backoff.
INVALID_SPEC_RETRY_DELAY = 300


@kopf.on.create(CRD_GROUP, CRD_VERSION, CRD_PLURAL_OBJECTSTORE)
@kopf.on.update(CRD_GROUP, CRD_VERSION, CRD_PLURAL_OBJECTSTORE)
@kopf.on.resume(CRD_GROUP, CRD_VERSION, CRD_PLURAL_OBJECTSTORE)
async def reconcile_objectstore(
    name: str,
    namespace: str,
    logger: logging.Logger,
    **kwargs: Any,
) -> None:
    """
    Handle the creation, update or resumption of an ObjectStore.

    The finalizer, PVC, Service and Deployment are reconciled from the latest
    state of the object, and status.phase is set once they are all in place.
    Any error is retried by kopf.
    """
    try:
        await reconcile_object_store(name, namespace, logger)
    except InvalidObjectStoreError as e:
        logger.error(f"Invalid ObjectStore '{namespace}/{name}': {e}")
        raise kopf.TemporaryError(str(e), delay=INVALID_SPEC_RETRY_DELAY) from e


@kopf.on.delete(CRD_GROUP, CRD_VERSION, CRD_PLURAL_OBJECTSTORE, optional=True)
async def delete_objectstore(
    name: str, namespace: str, logger: logging.Logger, **kwargs: Any
) -> None:
    """
    Handle the deletion of an ObjectStore.

    The operator's own finalizer is released by the reconciler. kopf keeps a
    finalizer of its own on the object while the bucket provisioner daemon
    runs and drops it once the daemon has stopped; optional=True only means
    this handler does not need one. The PVC, Service and Deployment are owned
    by the ObjectStore via owner references and will be garbage collected
    automatically.
    """
    logger.info(f"ObjectStore '{name}' in namespace '{namespace}' is being deleted.")
    await reconcile_object_store(name, namespace, logger)


@kopf.on.daemon(CRD_GROUP, CRD_VERSION, CRD_PLURAL_OBJECTSTORE, cancellation_timeout=10)
async def run_bucket_provisioner(
    name: str,
    namespace: str,
    stopped: kopf.DaemonStopped,
    logger: logging.Logger,
    **kwargs: Any,
) -> None:
    """
    Run the bucket provisioner of an ObjectStore for as long as the object
    exists. Only returns when kopf stops the daemon.
    """
    logger.info("Reconciling lib bucket provisioner.")
    bucket_controller = new_provisioner(
        operator_config.bucket_provisioner_name,
        ObjectStoreProvisioner(name, namespace),
        operator_config.bucket_namespace,
        resync_interval=operator_config.bucket_resync_interval,
        logger=logger,
    )
    try:
        await bucket_controller.run(stopped)
    except client.ApiException as e:
        raise ReconcileError(
            f"failed to run bucket controller: {e.reason}",
            resource="ObjectBucketClaim",
            operation="run",
        ) from e
