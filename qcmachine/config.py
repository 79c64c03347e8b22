"""Driver defaults and flag/env-var resolution."""

import os

DRIVER_NAME = "qingcloud"

DEFAULT_ZONE = "pek3a"
DEFAULT_IMAGE = "xenialx64b"
DEFAULT_CPU = 1
DEFAULT_MEMORY = 1024  # MB
DEFAULT_SSH_USER = "root"
DEFAULT_SSH_PORT = 22
DEFAULT_STORAGE_PATH = "~/.qcmachine"


# Flag destination -> environment variable consulted when the flag is absent.
ENV_VARS = {
    "access_key_id": "QINGCLOUD_ACCESS_KEY_ID",
    "secret_access_key": "QINGCLOUD_SECRET_ACCESS_KEY",
    "zone": "QINGCLOUD_ZONE",
    "image": "QINGCLOUD_IMAGE",
    "vxnet_id": "QINGCLOUD_VXNET_ID",
    "login_keypair": "QINGCLOUD_LOGIN_KEYPAIR",
    "ssh_key_path": "QINGCLOUD_SSH_KEYPATH",
    "storage_path": "QCMACHINE_STORAGE_PATH",
}


def resolve_option(value, name, default=None):
    """Flag value if given, else the option's env var, else *default*."""
    if value not in (None, ""):
        return value
    env_var = ENV_VARS.get(name)
    if env_var:
        env_value = os.environ.get(env_var)
        if env_value:
            return env_value
    return default
