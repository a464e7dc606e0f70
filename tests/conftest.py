"""Shared fixtures: a fake CoreV1Api serving kubernetes model objects per namespace."""

from unittest.mock import MagicMock

import pytest
from kubernetes import client

import clean_dev_volumes


def make_pod(name, claim_names=(), extra_volumes=()):
    volumes = [
        client.V1Volume(
            name=f"vol-{claim}",
            persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(claim_name=claim),
        )
        for claim in claim_names
    ]
    volumes.extend(extra_volumes)
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name),
        spec=client.V1PodSpec(containers=[client.V1Container(name="dev")], volumes=volumes or None),
    )


def make_pvc(name, labels=None):
    return client.V1PersistentVolumeClaim(
        metadata=client.V1ObjectMeta(name=name, labels=labels or {"dev.okteto.com": "true"})
    )


class FakeCluster:
    """Namespace -> pods / dev PVCs, exposed through a MagicMock CoreV1Api."""

    def __init__(self):
        self.pods = {}
        self.pvcs = {}
        self.core_v1 = MagicMock()
        self.core_v1.list_namespaced_pod.side_effect = self._list_pods
        self.core_v1.list_namespaced_persistent_volume_claim.side_effect = self._list_pvcs

    def _list_pods(self, namespace):
        return client.V1PodList(items=self.pods.get(namespace, []))

    def _list_pvcs(self, namespace, label_selector=None):
        return client.V1PersistentVolumeClaimList(items=self.pvcs.get(namespace, []))

    def deleted(self):
        return [(c.args[1], c.args[0]) for c in self.core_v1.delete_namespaced_persistent_volume_claim.call_args_list]


@pytest.fixture
def fake_cluster():
    return FakeCluster()


@pytest.fixture
def logger_active(caplog):
    """Enable the module logger for the test and capture INFO records."""
    caplog.set_level("INFO")
    previous = clean_dev_volumes.LOGGER.active
    clean_dev_volumes.LOGGER.active = True
    yield caplog
    clean_dev_volumes.LOGGER.active = previous
