import json
import logging
from pathlib import Path
from subprocess import CalledProcessError, check_output

from constants import ADMIN_KUBECONFIG

log = logging.getLogger(__name__)


def kubectl_get(*args: str, **kwargs) -> dict:
    """Run a kubectl get command with json.

    Missing objects are not an error: kubectl is asked to ignore them, and an
    empty mapping is returned instead.

    Args:
        args (str): arguments to pass to kubectl get.
        kwargs    : flags passed to kubectl().

    Returns:
        dict: A mapping of the get response.

    Raises:
        json.JSONDecodeError: If the output is not valid json.
    """
    output = kubectl("get", "--ignore-not-found", "-o", "json", *args, **kwargs)
    return json.loads(output) if output.strip() else {}


def kubectl(*args: str, kubeconfig: str = ADMIN_KUBECONFIG):
    """Run a kubectl cli command with a config file, once.

    Failures are not retried here; callers that wait on the cluster retry
    under their own backoff.

    Args:
        args (str): arguments to pass to kubectl.
        kubeconfig (str): path of the kubeconfig holding the admin credentials.

    Returns:
        str: The output of the command.

    Raises:
        FileNotFoundError: If the kubeconfig file is not found.
        CalledProcessError: If the command fails.
    """
    cfg = Path(kubeconfig)
    if not cfg.exists():
        raise FileNotFoundError(f"kubeconfig not found at {cfg}")
    command = ["kubectl", f"--kubeconfig={cfg}", *args]
    log.info("Executing {}".format(command))
    try:
        return check_output(command).decode("utf-8")
    except CalledProcessError as e:
        log.error(
            f"Command failed: {command}\nreturncode: {e.returncode}\nstdout: {e.output.decode()}"
        )
        raise
