"""Machine store: one YAML file of DriverState per machine."""

import logging
import os
import shutil

import yaml

from qcmachine.driver import DriverState
from qcmachine.provisioning.errors import DriverError

logger = logging.getLogger(__name__)

STATE_FILE = "config.yaml"


def machine_dir(storage_path: str, name: str) -> str:
    """Directory holding a machine's state file and generated SSH key."""
    return os.path.join(os.path.expanduser(storage_path), "machines", name)


def machine_exists(storage_path: str, name: str) -> bool:
    return os.path.exists(os.path.join(machine_dir(storage_path, name), STATE_FILE))


def save_state(storage_path: str, state: DriverState) -> str:
    """Write *state* to its machine directory. Returns the file path."""
    directory = machine_dir(storage_path, state.machine_name)
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, STATE_FILE)
    with open(path, "w") as f:
        yaml.safe_dump(state.to_dict(), f, default_flow_style=False, sort_keys=False)
    # The file holds the secret access key.
    os.chmod(path, 0o600)
    logger.debug(f"Saved machine state to {path}")
    return path


def load_state(storage_path: str, name: str) -> DriverState:
    """Load the stored state of machine *name*."""
    path = os.path.join(machine_dir(storage_path, name), STATE_FILE)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise DriverError(f"Machine '{name}' does not exist (no {path})") from e
    except yaml.YAMLError as e:
        raise DriverError(f"Error parsing machine state {path}: {e}") from e
    if not isinstance(data, dict):
        raise DriverError(f"Machine state {path} is empty or malformed")
    return DriverState.from_dict(data)


def remove_machine(storage_path: str, name: str) -> None:
    """Delete the machine directory, generated SSH key included."""
    shutil.rmtree(machine_dir(storage_path, name), ignore_errors=True)
