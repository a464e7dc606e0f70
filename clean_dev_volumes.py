#!/usr/bin/env python3
import argparse
import logging
import os
import subprocess
import sys
import tempfile
from collections import namedtuple
from contextlib import contextmanager
from urllib.parse import urlparse

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

import okteto_api

# Label set by Okteto on the PVCs of development containers.
DEV_LABEL_SELECTOR = "dev.okteto.com=true"
# Okteto CLI command writing the kubeconfig of the Okteto cluster in $KUBECONFIG.
DEFAULT_KUBECONFIG_COMMAND = "okteto kubeconfig"

SEPARATOR = "-----------------------------------------------"

###########################################
### LOGGER WRAPPER API ####################
###########################################
class LoggerWrapper:
    def __init__(self):
        self.active = False

    def init(self, filename=None, verbose=False):
        level = logging.DEBUG if verbose else logging.INFO
        if filename is None:
            logging.basicConfig(stream=sys.stdout, level=level, format='%(asctime)s [%(levelname)s] %(message)s',
                                datefmt='%m/%d/%Y %H:%M:%S')
        else:
            logging.basicConfig(filename=filename, filemode='w', level=level,
                                format='%(asctime)s [%(levelname)s] %(message)s', datefmt='%m/%d/%Y %H:%M:%S')
        self.active = True

    def debug(self, message):
        if self.active:
            logging.debug(message)

    def info(self, message):
        if self.active:
            logging.info(message)

    def warning(self, message):
        if self.active:
            logging.warning(message)

    def error(self, message):
        if self.active:
            logging.error(message)

# Global wrapper logger used (enable, disable, using stdout or file)
LOGGER = LoggerWrapper()

###########################################
### CONFIGURATION #########################
###########################################
class ConfigError(Exception):
    pass


class KubeconfigError(Exception):
    pass


class NamespaceSkipped(Exception):
    pass


def describe_error(e):
    if isinstance(e, ApiException):
        return f"({e.status}) {e.reason}"
    return str(e)


class Config(namedtuple("Config", ["token", "url", "host", "kubeconfig_command",
                                   "label_selector", "dry_run", "timeout"])):
    """Settings of one cleaning run, read once at startup."""
    __slots__ = ()

    @classmethod
    def from_env(cls, environ, kubeconfig_command=DEFAULT_KUBECONFIG_COMMAND,
                 label_selector=DEV_LABEL_SELECTOR, dry_run=False, timeout=okteto_api.DEFAULT_TIMEOUT):
        token = environ.get("OKTETO_TOKEN", "")
        url = environ.get("OKTETO_URL", "")
        if token == "" or url == "":
            raise ConfigError("OKTETO_TOKEN and OKTETO_URL environment variables are required")

        try:
            host = urlparse(url).netloc
        except ValueError as e:
            raise ConfigError(f"Invalid OKTETO_URL {e}") from e
        if host == "":
            raise ConfigError(f"Invalid OKTETO_URL {url!r}: expected an URL like https://okteto.example.com")

        return cls(token=token, url=url, host=host, kubeconfig_command=kubeconfig_command,
                   label_selector=label_selector, dry_run=dry_run, timeout=timeout)

###########################################
### KUBECONFIG BOOTSTRAP ##################
###########################################
def create_kubeconfig(command, kubeconfig_path):
    """Run the Okteto CLI to write the cluster kubeconfig, return its combined output."""
    os.makedirs(os.path.dirname(kubeconfig_path), exist_ok=True)
    env = dict(os.environ, KUBECONFIG=kubeconfig_path)
    try:
        result = subprocess.run(["bash", "-c", command], stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                env=env, text=True, check=False)
    except OSError as e:
        raise KubeconfigError(f"cannot run {command!r}: {e}") from e

    if result.returncode != 0:
        raise KubeconfigError(f"{command!r} exited with status {result.returncode}: {result.stdout}")
    return result.stdout


@contextmanager
def kubeconfig_scope(command):
    """Yield the path of a freshly created kubeconfig, removed on exit."""
    with tempfile.TemporaryDirectory() as temp_dir:
        kubeconfig_path = os.path.join(temp_dir, ".kube", "config")
        output = create_kubeconfig(command, kubeconfig_path)
        LOGGER.info(output)
        yield kubeconfig_path


def build_core_v1_client(kubeconfig_path):
    api_client = config.new_client_from_config(config_file=kubeconfig_path)
    return client.CoreV1Api(api_client=api_client)

###########################################
### CLUSTER CLIENT ########################
###########################################
class DevVolumeSelector:
    """Select the development PVCs of a namespace.

    label_selector is sent to the API server, predicate (when set) is then
    applied to every returned PVC object.
    """
    def __init__(self, label_selector=DEV_LABEL_SELECTOR, predicate=None):
        self.label_selector = label_selector
        self.predicate = predicate

    def matches(self, pvc):
        if self.predicate is None:
            return True
        return bool(self.predicate(pvc))


class ClusterClient:
    def __init__(self, core_v1, selector=None):
        self.core_v1 = core_v1
        self.selector = selector or DevVolumeSelector()

    def get_mounted_pvcs(self, namespace):
        mounted_pvcs = set()
        for pod in self.core_v1.list_namespaced_pod(namespace).items:
            if not pod.spec or not pod.spec.volumes:
                continue
            for volume in pod.spec.volumes:
                if volume.persistent_volume_claim is None:
                    continue
                mounted_pvcs.add(volume.persistent_volume_claim.claim_name)
        return mounted_pvcs

    def get_dev_pvcs(self, namespace):
        result = self.core_v1.list_namespaced_persistent_volume_claim(namespace,
                                                                      label_selector=self.selector.label_selector)
        return [pvc.metadata.name for pvc in result.items if self.selector.matches(pvc)]

    def delete_pvc(self, namespace, name):
        self.core_v1.delete_namespaced_persistent_volume_claim(name, namespace)

###########################################
### CLEANING ##############################
###########################################
class NamespaceResult:
    def __init__(self, namespace):
        self.namespace = namespace
        self.dev_pvcs = list()
        self.mounted = list()
        self.deleted = list()
        self.failed = list()
        self.dry_run = list()

    def summary(self):
        return (f"ns {self.namespace!r}: dev={len(self.dev_pvcs)} mounted={len(self.mounted)} "
                f"deleted={len(self.deleted)} failed={len(self.failed)} dry_run={len(self.dry_run)}")


def clean_namespace(cluster, namespace, dry_run=False):
    """Delete the dev PVCs of namespace not mounted by any pod.

    List errors are raised as NamespaceSkipped, naming the failing call.
    Delete errors are logged and the next PVC is processed.
    """
    result = NamespaceResult(namespace)

    # All the PVCs mounted in pods of the namespace.
    try:
        mounted_pvcs = cluster.get_mounted_pvcs(namespace)
    except Exception as e:
        raise NamespaceSkipped(f"error checking PVCs for namespace: {describe_error(e)}") from e
    # PVCs created by Okteto for development containers.
    try:
        result.dev_pvcs = cluster.get_dev_pvcs(namespace)
    except Exception as e:
        raise NamespaceSkipped(f"error checking dev PVCs for namespace: {describe_error(e)}") from e

    if not result.dev_pvcs:
        LOGGER.info(f"Skipping ns {namespace!r} because there are no dev PVCs")
        return result

    for dev_pvc in result.dev_pvcs:
        if dev_pvc in mounted_pvcs:
            LOGGER.info(f"Skipping PVC {dev_pvc!r} in namespace {namespace!r} because it is mounted in a pod")
            result.mounted.append(dev_pvc)
            continue

        if dry_run:
            LOGGER.info(f"(DRY_RUN) Would delete PVC {dev_pvc!r} in namespace {namespace!r}")
            result.dry_run.append(dev_pvc)
            continue

        try:
            cluster.delete_pvc(namespace, dev_pvc)
        except Exception as e:
            LOGGER.error(f"Error deleting PVC {dev_pvc!r} in namespace {namespace!r}: {e}")
            result.failed.append(dev_pvc)
        else:
            LOGGER.info(f"Deleted PVC {dev_pvc!r} in namespace {namespace!r}")
            result.deleted.append(dev_pvc)

    LOGGER.info(result.summary())
    return result


def clean_namespaces(cluster, namespaces, dry_run=False):
    results = list()
    for namespace in namespaces:
        LOGGER.info(f"Checking namespace {namespace!r}")
        try:
            results.append(clean_namespace(cluster, namespace, dry_run=dry_run))
        except NamespaceSkipped as e:
            LOGGER.error(f"Skipping ns {namespace!r} because there was an {e}")
        except Exception as e:
            LOGGER.error(f"Skipping ns {namespace!r} because there was an unexpected error: {describe_error(e)}")
        LOGGER.info(SEPARATOR)
    return results

###########################################
### MAIN ##################################
###########################################
def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="clean-dev-volumes",
                                     description="Delete the Okteto dev PVCs not mounted by any pod, in every namespace")
    options = parser.add_argument_group('options')
    options.add_argument("-d", "--dry-run",            default=False,                        help="Only log the PVCs that would be deleted",    action='store_true')
    options.add_argument("-k", "--kubeconfig-command", default=DEFAULT_KUBECONFIG_COMMAND,   help="Command writing the cluster kubeconfig in $KUBECONFIG")
    options.add_argument("-s", "--label-selector",     default=DEV_LABEL_SELECTOR,           help="Label selector of the dev PVCs")
    options.add_argument("-t", "--timeout",            default=okteto_api.DEFAULT_TIMEOUT,   help="Timeout in seconds of the Okteto API call", type=float)
    options.add_argument("-l", "--log-file",           default=None,                         help="Enable the file log and specify the name of the log file")
    options.add_argument("-v", "--verbose",            default=False,                        help="Enable debug logs",                          action='store_true')
    return parser.parse_args(argv)


def run(cfg, namespaces, kubeconfig_path):
    try:
        core_v1 = build_core_v1_client(kubeconfig_path)
    except config.config_exception.ConfigException as e:
        LOGGER.error(f"There was an error creating the Kubernetes client: {e}")
        return -1
    except Exception as e:
        # Unparsable or non-mapping kubeconfig, unreadable file.
        LOGGER.error(f"There was an error creating the Kubernetes client: {e!r}")
        return -1

    cluster = ClusterClient(core_v1, DevVolumeSelector(cfg.label_selector))
    clean_namespaces(cluster, namespaces, dry_run=cfg.dry_run)
    return 0


def main(argv=None, environ=None):
    args = parse_args(argv)
    LOGGER.init(args.log_file, verbose=args.verbose)

    try:
        cfg = Config.from_env(os.environ if environ is None else environ,
                              kubeconfig_command=args.kubeconfig_command, label_selector=args.label_selector,
                              dry_run=args.dry_run, timeout=args.timeout)
    except ConfigError as e:
        LOGGER.error(str(e))
        return -1

    LOGGER.info("Running in dry-run mode, no PVC will be deleted" if cfg.dry_run else "PVCs will be deleted")
    LOGGER.debug(f"Okteto host={cfg.host} label_selector={cfg.label_selector} command={cfg.kubeconfig_command!r}")

    try:
        namespaces = okteto_api.get_namespaces(cfg.host, cfg.token, timeout=cfg.timeout)
    except okteto_api.OktetoAPIError as e:
        LOGGER.error(f"There was an error requesting the namespaces: {e}")
        return -1
    LOGGER.info(f"Found {len(namespaces)} namespaces")

    try:
        with kubeconfig_scope(cfg.kubeconfig_command) as kubeconfig_path:
            return run(cfg, namespaces, kubeconfig_path)
    except KubeconfigError as e:
        LOGGER.error(f"There was an error creating the kubeconfig: {e}")
        return -1
    except OSError as e:
        LOGGER.error(f"There was an error creating a temporary directory: {e}")
        return -1


if __name__ == '__main__':
    sys.exit(main())
