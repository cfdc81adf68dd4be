import copy
from typing import Any, Dict

from ....crds.objectstore import ObjectStore
from .naming import instance_name


def build_pvc(objectstore: ObjectStore) -> Dict[str, Any]:
    """
    Builds the PVC holding the gateway database from the ObjectStore's
    volumeClaimTemplate.

    Access mode and volume mode are always ReadWriteOnce/Filesystem since a
    single gateway writes to a sqlite database on it. Everything else in the
    template (size, storage class, selector...) is kept as is.
    """
    template = objectstore.volume_claim_template or {}
    spec = copy.deepcopy(template.get("spec") or {})
    # TODO: honour the template's accessModes/volumeMode once the gateway can
    # run on something other than a single RWO filesystem volume.
    spec["accessModes"] = ["ReadWriteOnce"]
    spec["volumeMode"] = "Filesystem"

    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": instance_name(objectstore.name, objectstore.namespace),
            "namespace": objectstore.namespace,
        },
        "spec": spec,
    }
