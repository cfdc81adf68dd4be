"""
Reconciliation of an ObjectStore with its PVC, Service and Deployment.

One call converges one ObjectStore and returns. Retries, backoff and the
one-call-per-object guarantee belong to kopf; every failure here is raised
to it as a ReconcileError.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from kubernetes import client

from ...crds.errors import ReconcileError
from ...crds.objectstore import ObjectStore
from ...utils.kube import (
    ClusterClient,
    OperationResult,
    is_already_exists,
    is_not_found,
    set_controller_reference,
)
from .resources.deployment import apply_deployment_spec, build_deployment
from .resources.naming import finalizer_name
from .resources.pvc import build_pvc
from .resources.services import apply_service_spec, build_service

PHASE_READY = "Ready"
PHASE_DELETING = "Deleting"


class CleanupHook(Protocol):
    """
    Called for a deleted ObjectStore before its finalizer is removed.

    Raising keeps the finalizer in place and the deletion is retried.
    """

    async def __call__(self, objectstore: ObjectStore, logger: logging.Logger) -> None:
        ...


_cleanup_hooks: List[CleanupHook] = []


def register_cleanup_hook(hook: CleanupHook) -> CleanupHook:
    """Registers a hook run on every ObjectStore deletion. Usable as a decorator."""
    _cleanup_hooks.append(hook)
    return hook


@dataclass
class ReconcileResult:
    phase: str
    pvc_created: bool = False
    service_result: Optional[OperationResult] = None
    cluster_ip: str = ""
    deployment_result: Optional[OperationResult] = None


class ObjectStoreReconciler:
    """
    Handles the creation and management of Kubernetes resources for an ObjectStore.
    """

    def __init__(
        self,
        objectstore: ObjectStore,
        cluster: ClusterClient,
        logger: logging.Logger,
        cleanup_hooks: Optional[Sequence[CleanupHook]] = None,
    ):
        self.objectstore = objectstore
        self.cluster = cluster
        self.logger = logger
        self.cleanup_hooks = list(_cleanup_hooks if cleanup_hooks is None else cleanup_hooks)
        self.finalizer = finalizer_name(objectstore.kind())

    async def reconcile(self) -> ReconcileResult:
        if self.objectstore.is_deleting:
            return await self.reconcile_delete()
        return await self.reconcile_active()

    async def reconcile_delete(self) -> ReconcileResult:
        """
        Runs the cleanup hooks and drops the finalizer. The PVC, Service and
        Deployment are owned by the ObjectStore and left to the garbage collector.
        """
        name = self.objectstore.name
        for hook in self.cleanup_hooks:
            await hook(self.objectstore, self.logger)

        try:
            await asyncio.to_thread(self.objectstore.remove_finalizer, self.finalizer)
        except client.ApiException as e:
            raise ReconcileError(
                f"failed to remove finalizer from ObjectStore '{name}': {e.reason}",
                resource="ObjectStore",
                operation="remove-finalizer",
            ) from e

        self.logger.info(f"Successfully deleted ObjectStore '{name}'.")
        return ReconcileResult(phase=PHASE_DELETING)

    async def reconcile_active(self) -> ReconcileResult:
        """
        Finalizer, PVC, Service, Deployment, in that order. The first failure
        stops the pass; an ObjectStore without an image gets everything but
        the Deployment.
        """
        await self._ensure_finalizer()

        pvc_created = await self._reconcile_pvc()
        service_result, cluster_ip = await self._reconcile_service()
        deployment_result = await self._reconcile_deployment()
        await self._update_phase(PHASE_READY)

        return ReconcileResult(
            phase=PHASE_READY,
            pvc_created=pvc_created,
            service_result=service_result,
            cluster_ip=cluster_ip,
            deployment_result=deployment_result,
        )

    async def _ensure_finalizer(self) -> None:
        try:
            added = await asyncio.to_thread(self.objectstore.add_finalizer, self.finalizer)
        except client.ApiException as e:
            raise ReconcileError(
                f"failed to add finalizer to ObjectStore '{self.objectstore.name}': {e.reason}",
                resource="ObjectStore",
                operation="add-finalizer",
            ) from e
        if added:
            self.logger.info(f"Added finalizer '{self.finalizer}'.")

    async def _update_phase(self, phase: str) -> None:
        if self.objectstore.phase == phase:
            return
        try:
            await asyncio.to_thread(self.objectstore.patch_status, {"phase": phase})
        except client.ApiException as e:
            raise ReconcileError(
                f"failed to update status of ObjectStore '{self.objectstore.name}': {e.reason}",
                resource="ObjectStore",
                operation="update-status",
            ) from e
        self.logger.info(f"ObjectStore '{self.objectstore.name}' is {phase}.")

    async def _reconcile_pvc(self) -> bool:
        """Creates the PVC once. An existing PVC is never modified."""
        self.objectstore.validate_volume_claim_template()
        pvc = build_pvc(self.objectstore)
        set_controller_reference(self.objectstore.owner_body(), pvc)
        name = pvc["metadata"]["name"]
        try:
            await asyncio.to_thread(self.cluster.create, pvc)
        except client.ApiException as e:
            if is_already_exists(e):
                self.logger.info(f"PVC '{name}' already exists.")
                return False
            raise ReconcileError(
                f"failed to create PVC '{name}': {e.reason}",
                resource="PersistentVolumeClaim",
                operation="create",
            ) from e
        self.logger.info(f"PVC '{name}' created.")
        return True

    async def _reconcile_service(self) -> Tuple[OperationResult, str]:
        service = build_service(self.objectstore)
        owner = self.objectstore.owner_body()

        def mutate(obj: Dict[str, Any]) -> None:
            set_controller_reference(owner, obj)
            apply_service_spec(obj, self.objectstore)

        try:
            result, current = await asyncio.to_thread(
                self.cluster.create_or_update, service, mutate
            )
        except client.ApiException as e:
            raise ReconcileError(
                f"failed to create or update ObjectStore '{self.objectstore.name}' "
                f"service '{service['metadata']['name']}': {e.reason}",
                resource="Service",
                operation="create-or-update",
            ) from e

        cluster_ip = current.get("spec", {}).get("clusterIP", "")
        self.logger.info(
            f"Object store gateway service {result.value} at {cluster_ip or '<pending>'}."
        )
        return result, cluster_ip

    async def _reconcile_deployment(self) -> OperationResult:
        deployment = build_deployment(self.objectstore)
        owner = self.objectstore.owner_body()

        def mutate(obj: Dict[str, Any]) -> None:
            set_controller_reference(owner, obj)
            apply_deployment_spec(obj, self.objectstore)

        try:
            result, _ = await asyncio.to_thread(
                self.cluster.create_or_update, deployment, mutate
            )
        except client.ApiException as e:
            raise ReconcileError(
                f"failed to create or update deployment "
                f"'{deployment['metadata']['name']}': {e.reason}",
                resource="Deployment",
                operation="create-or-update",
            ) from e

        self.logger.info(f"Deployment '{deployment['metadata']['name']}' {result.value}.")
        return result


async def reconcile_object_store(
    name: str,
    namespace: str,
    logger: logging.Logger,
    *,
    custom_objects_api: Optional[client.CustomObjectsApi] = None,
    cluster: Optional[ClusterClient] = None,
    cleanup_hooks: Optional[Sequence[CleanupHook]] = None,
) -> Optional[ReconcileResult]:
    """
    Reconcile one ObjectStore.

    Args:
        name: Name of the ObjectStore
        namespace: Namespace of the ObjectStore
        logger: Logger instance
        custom_objects_api: API used to read and patch the ObjectStore
        cluster: Client used for the dependent resources
        cleanup_hooks: Hooks run on deletion, defaults to the registered ones

    Returns:
        The outcome of the reconciliation, or None if the ObjectStore no
        longer exists.

    Raises:
        ReconcileError: on any API failure, kopf retries with backoff.
        InvalidObjectStoreError: if the ObjectStore spec is unusable.
    """
    logger.info(f"Reconciling ObjectStore '{namespace}/{name}'...")
    api = custom_objects_api or client.CustomObjectsApi()

    try:
        objectstore = await asyncio.to_thread(
            ObjectStore.get, name, namespace=namespace, api=api
        )
    except client.ApiException as e:
        if is_not_found(e):
            logger.info(
                f"ObjectStore '{namespace}/{name}' not found. "
                "Ignoring since object must be deleted."
            )
            return None
        raise ReconcileError(
            f"failed to get ObjectStore '{namespace}/{name}': {e.reason}",
            resource="ObjectStore",
            operation="get",
        ) from e

    reconciler = ObjectStoreReconciler(
        objectstore,
        cluster or ClusterClient(),
        logger,
        cleanup_hooks=cleanup_hooks,
    )
    result = await reconciler.reconcile()

    if result.phase == PHASE_READY:
        logger.info(f"Successfully reconciled ObjectStore '{namespace}/{name}'.")
    return result
