"""
Fixed values shared by the ObjectStore resource builders.
"""

# ceph:ceph inside the gateway image. The pod runs as this identity and the
# init container chowns the data directory to it.
DAEMON_UID = 167
DAEMON_GID = 167

APP_NAME = "rgw"
DAEMON_BINARY = "radosgw-sqlite"
DAEMON_CONTAINER_NAME = "rgw"
CHOWN_CONTAINER_NAME = "chown-container-data-dir"

DATA_DIRECTORY = "/var/lib/ceph/radosgw/data"
DATA_VOLUME_NAME = "ceph-daemon-data"
CEPH_LIB = "/usr/lib64/rados-classes"

POD_NAME_ENV_VAR = "POD_NAME"

RGW_INTERNAL_PORT = 7480
RGW_SERVICE_PORT = 8080
RGW_PORT_NAME = "http"

LABEL_OBJECT_STORE = "object_store"
