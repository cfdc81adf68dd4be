import hashlib
from typing import Dict, List

from ....crds.const import CRD_GROUP
from .constants import APP_NAME, LABEL_OBJECT_STORE


def instance_name(name: str, namespace: str) -> str:
    """Name shared by the PVC, Service and Deployment of an ObjectStore."""
    return f"{APP_NAME}-{name}-{namespace}"


def get_labels(name: str) -> Dict[str, str]:
    return {LABEL_OBJECT_STORE: name}


def normalize_key(key: str) -> str:
    """
    Converts a config key in any format to a key with underscores.

    Ceph accepts spaces, underscores and hyphens as word separators, so
    "some config key", "some_config_key" and "some-config-key" all name the
    same option.
    """
    return key.replace(" ", "_").replace("-", "_")


def new_flag(key: str, value: str) -> str:
    """
    Returns the key-value pair as a Ceph command line flag.

    "debug rgw" ~normalize~> "debug_rgw" ~to flag~> "--debug-rgw=<value>"
    """
    flag = normalize_key(key).replace("_", "-")
    return f"--{flag}={value}"


def container_env_var_reference(env_var_name: str) -> str:
    """
    Reference to a container env var, expanded by the kubelet when used in
    command or args.
    """
    return f"$({env_var_name})"


def stable_hash(value: str) -> str:
    """
    Stable pseudorandom string for the given seed: the first 16 bytes of its
    SHA-256 digest, hex encoded.

    Do NOT change the output of this function, daemons started by older
    releases must keep the same ids.
    """
    return hashlib.sha256(value.encode()).digest()[:16].hex()


def finalizer_name(kind: str) -> str:
    return f"{kind.lower()}.{CRD_GROUP}"


def default_daemon_flags() -> List[str]:
    return [
        # Log to stdout, stay in the foreground
        "-d",
        # There is no ceph cluster to fetch the config from
        "--no-mon-config",
        "--nolockdep",
    ]
