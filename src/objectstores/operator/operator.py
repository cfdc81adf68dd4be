"""
Kubernetes operator for ObjectStore custom resources.

This module contains the operator-wide Kopf handlers. The ObjectStore
handlers are kept thin and delegate to specialized modules for:
- Resource building (objectstore/resources/)
- Resource reconciliation (objectstore/reconciler.py)
- Bucket provisioning (bucket/)
"""
import logging
from typing import Any

import kopf

from ..utils.kube import KubernetesConfigurationError, configure_kube_client
from .config import config as operator_config


# Kubernetes client configuration is set up at startup rather than import
# time so that unit tests can import the handlers without a cluster.


@kopf.on.startup()
async def on_startup(
    settings: kopf.OperatorSettings, logger: logging.Logger, **kwargs: Any
) -> None:
    """
    Handle the startup of the operator.

    This sets operator-wide settings.
    """
    try:
        configure_kube_client(logger)
    except KubernetesConfigurationError as exc:
        raise kopf.PermanentError(str(exc)) from exc

    logger.info("Operator started.")
    logger.info(
        f"Bucket provisioner: {operator_config.bucket_provisioner_name} "
        f"(namespace: {operator_config.bucket_namespace or 'all'})"
    )

    # The default worker limit is unbounded which means you can EASILY flood
    # your API server on restart unless you limit it.
    settings.batching.worker_limit = operator_config.worker_limit

    # All logs by default go to the k8s event api, disable event posting to
    # reduce API load.
    settings.posting.enabled = operator_config.posting_enabled
