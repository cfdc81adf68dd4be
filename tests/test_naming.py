import hashlib

import pytest

from objectstores.operator.objectstore.resources.naming import (
    container_env_var_reference,
    default_daemon_flags,
    finalizer_name,
    get_labels,
    instance_name,
    new_flag,
    normalize_key,
    stable_hash,
)


def test_instance_name():
    assert instance_name("store", "default") == "rgw-store-default"


def test_labels():
    assert get_labels("store") == {"object_store": "store"}


@pytest.mark.parametrize(
    "key", ["debug rgw", "debug_rgw", "debug-rgw"]
)
def test_new_flag_accepts_any_separator(key):
    assert normalize_key(key) == "debug_rgw"
    assert new_flag(key, "15") == "--debug-rgw=15"


def test_new_flag_multi_word():
    assert (
        new_flag("librados sqlite data dir", "/var/lib/ceph/radosgw/data")
        == "--librados-sqlite-data-dir=/var/lib/ceph/radosgw/data"
    )


def test_container_env_var_reference():
    assert container_env_var_reference("POD_NAME") == "$(POD_NAME)"


def test_stable_hash_is_stable():
    value = stable_hash("$(POD_NAME)")
    assert value == stable_hash("$(POD_NAME)")
    assert len(value) == 32
    int(value, 16)
    assert value != stable_hash("other-pod")


def test_stable_hash_is_truncated_sha256():
    # sha256("") starts with e3b0c442...
    assert stable_hash("") == "e3b0c44298fc1c149afbf4c8996fb924"


def test_finalizer_name():
    assert finalizer_name("ObjectStore") == "objectstore.object.rook-s3-nano"


def test_default_daemon_flags():
    assert default_daemon_flags() == ["-d", "--no-mon-config", "--nolockdep"]


def test_id_hash_matches_sha256_of_unexpanded_reference():
    expected = hashlib.sha256(b"$(POD_NAME)").hexdigest()[:32]
    assert stable_hash(container_env_var_reference("POD_NAME")) == expected


@pytest.mark.parametrize("key", ["some config key", "some-config-key", "some_config_key"])
def test_flag_spellings_collapse(key):
    assert new_flag(key, "x") == "--some-config-key=x"
