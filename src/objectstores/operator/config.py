import logging
import os

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/objectstore-operator/config.yaml"
DEFAULT_WORKER_LIMIT = 1
DEFAULT_POSTING_ENABLED = False
DEFAULT_BUCKET_PROVISIONER_NAME = "s3.rook.io/bucket"
# Empty means every namespace
DEFAULT_BUCKET_NAMESPACE = ""
DEFAULT_BUCKET_RESYNC_INTERVAL = 30


class OperatorConfig:
    def __init__(self):
        self.config_path = os.environ.get(
            "OBJECTSTORE_OPERATOR_CONFIG_PATH", DEFAULT_CONFIG_PATH
        )
        self._config = self._load_config()

        def get_bool(value):
            return str(value).lower() in ("true", "1", "t")

        self.worker_limit = self._get_value(
            "OBJECTSTORE_WORKER_LIMIT",
            "workerLimit",
            DEFAULT_WORKER_LIMIT,
            caster=int,
        )
        self.posting_enabled = self._get_value(
            "OBJECTSTORE_POSTING_ENABLED",
            "postingEnabled",
            DEFAULT_POSTING_ENABLED,
            caster=get_bool,
        )
        self.bucket_provisioner_name = self._get_value(
            "OBJECTSTORE_BUCKET_PROVISIONER_NAME",
            "bucketProvisionerName",
            DEFAULT_BUCKET_PROVISIONER_NAME,
        )
        self.bucket_namespace = self._get_value(
            "OBJECTSTORE_BUCKET_NAMESPACE",
            "bucketNamespace",
            DEFAULT_BUCKET_NAMESPACE,
        )
        self.bucket_resync_interval = self._get_value(
            "OBJECTSTORE_BUCKET_RESYNC_INTERVAL",
            "bucketResyncInterval",
            DEFAULT_BUCKET_RESYNC_INTERVAL,
            caster=int,
        )

    def _get_value(self, env_key, yaml_key, default, caster=None):
        val = os.environ.get(env_key, self._config.get(yaml_key, default))
        if caster:
            return caster(val)
        return val

    def _load_config(self):
        try:
            with open(self.config_path, "r") as f:
                config_data = yaml.safe_load(f)
                logger.info(f"Loaded operator configuration from {self.config_path}")
                return config_data if config_data else {}
        except FileNotFoundError:
            logger.info(
                f"Operator config file not found at {self.config_path}, using default values."
            )
            return {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(
                f"Error loading operator configuration from {self.config_path}: {e}"
            )
            return {}


# Global config instance to be used across the operator
config = OperatorConfig()
