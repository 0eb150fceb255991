import json
import os
from types import SimpleNamespace

import pytest

from cloudadaptor.adaptor.rke.engine import (
    CA_CERT_NAME,
    KUBE_ADMIN_CERT_NAME,
    CertificatePKI,
    Host,
    KubeCluster,
    RKEEngine,
    state_file_path,
)
from cloudadaptor.adaptor.rkeconfig import default_rke_config
from cloudadaptor.config import DBConfig, Settings
from cloudadaptor.datastore import Database

ADMIN_KUBECONFIG = """apiVersion: v1
kind: Config
clusters:
- name: demo
  cluster:
    server: https://10.0.0.1:6443
contexts:
- name: demo
  context:
    cluster: demo
    user: kube-admin
current-context: demo
users:
- name: kube-admin
  user: {}
"""

ALL_ROLES = ["controlplane", "etcd", "worker"]


def make_rke_config(addresses=("10.0.0.1", "10.0.0.2", "10.0.0.3"), roles=None, name="demo",
                    kubernetes_version=""):
    nodes = [{"ip": ip, "roles": list(roles or ALL_ROLES)} for ip in addresses]
    return default_rke_config(name, nodes, kubernetes_version=kubernetes_version)


class FakeKubeCluster(KubeCluster):

    def __init__(self, engine, rke_config, encryption_config=""):
        self.engine = engine
        self.rke_config = rke_config
        self.control_plane_hosts = [Host(n.address, n.hostname_override or "") for n in rke_config.nodes_with_role("controlplane")]
        self.etcd_hosts = [Host(n.address, n.hostname_override or "") for n in rke_config.nodes_with_role("etcd")]
        self.worker_hosts = [Host(n.address, n.hostname_override or "") for n in rke_config.nodes_with_role("worker")]
        self.inactive_hosts = [Host(a) for a in engine.unreachable]
        self.certificates = {}
        self.certificate_dir = ""
        self.encryption_config = encryption_config
        self.new_hosts = {}
        self.max_unavailable_for_worker_nodes = 0
        self.max_unavailable_for_control_nodes = 0

    def _call(self, name):
        self.engine.calls.append(name)

    def setup_dialers(self, ctx, dialers):
        self._call("setup_dialers")

    def tunnel_hosts(self, ctx, flags):
        self._call("tunnel_hosts")

    def check_cluster_ports(self, ctx, current):
        self._call("check_cluster_ports")

    def set_up_hosts(self, ctx, flags):
        self._call("set_up_hosts")

    def calculate_max_unavailable(self):
        self._call("calculate_max_unavailable")
        return 1, 1

    def pre_pull_k8s_images(self, ctx):
        self._call("pre_pull_k8s_images")

    def deploy_control_plane(self, ctx, svc_options, reconcile):
        self._call("deploy_control_plane")
        return self.engine.control_plane_message

    def deploy_worker_plane(self, ctx, svc_options, reconcile):
        self._call("deploy_worker_plane")
        return self.engine.worker_plane_message

    def update_cluster_current_state(self, ctx, full_state):
        self._call("update_cluster_current_state")

    def clean_dead_logs(self, ctx):
        self._call("clean_dead_logs")

    def sync_labels_and_taints(self, ctx, current):
        self._call("sync_labels_and_taints")

    def rewrite_secrets(self, ctx):
        self._call("rewrite_secrets")

    def rotate_encryption_key(self, ctx, full_state):
        self._call("rotate_encryption_key")

    def reconcile_desired_state_encryption_config(self, ctx, full_state):
        self._call("reconcile_desired_state_encryption_config")

    def is_encryption_custom_config(self):
        return self.engine.encryption_custom

    def is_encryption_enabled(self):
        return self.engine.encryption_enabled


class FakeEngine(RKEEngine):
    """Records engine calls; writes a minimal full-state document on init."""

    def __init__(self):
        self.calls = []
        self.unreachable = []
        self.init_error = None
        self.save_failures = 0
        self.save_attempts = 0
        self.control_plane_message = ""
        self.worker_plane_message = ""
        self.current = None
        self.legacy_kube_api = False
        self.encryption_custom = False
        self.encryption_enabled = True
        self.clusters = []

    def cluster_init(self, ctx, rke_config, dialers, flags):
        self.calls.append("cluster_init")
        if self.init_error is not None:
            raise self.init_error
        path = state_file_path(flags.cluster_file_path, flags.config_dir)
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"desiredState": {"rkeConfig": rke_config.to_dict()}, "currentState": {}}, f)

    def init_cluster_object(self, ctx, rke_config, flags, encryption_config):
        self.calls.append("init_cluster_object")
        cluster = FakeKubeCluster(self, rke_config, encryption_config)
        self.clusters.append(cluster)
        return cluster

    def get_service_options(self, kubernetes_version, data):
        return {}

    def get_cluster_state(self, ctx, full_state):
        self.calls.append("get_cluster_state")
        return self.current

    def set_up_authentication(self, ctx, kube_cluster, current, full_state):
        self.calls.append("set_up_authentication")
        kube_cluster.certificates = {
            KUBE_ADMIN_CERT_NAME: CertificatePKI(name=KUBE_ADMIN_CERT_NAME, certificate_pem="ADMIN-CERT",
                                                 key_pem="ADMIN-KEY", config=ADMIN_KUBECONFIG),
            CA_CERT_NAME: CertificatePKI(name=CA_CERT_NAME, certificate_pem="CA-CERT"),
        }

    def reconcile_cluster(self, ctx, kube_cluster, current, flags, svc_options):
        self.calls.append("reconcile_cluster")

    def reconcile_encryption_provider_config(self, ctx, kube_cluster, current):
        self.calls.append("reconcile_encryption_provider_config")

    def apply_authz_resources(self, ctx, rke_config, flags, dialers):
        self.calls.append("apply_authz_resources")

    def save_full_state_to_kubernetes(self, ctx, kube_cluster, full_state):
        self.save_attempts += 1
        if self.save_attempts <= self.save_failures:
            raise RuntimeError("configmap write refused")
        self.calls.append("save_full_state_to_kubernetes")

    def configure_cluster(self, ctx, rke_config, certificates, flags, dialers, data, use_kubectl):
        self.calls.append("configure_cluster")

    def is_legacy_kube_api(self, ctx, kube_cluster):
        return self.legacy_kube_api

    def restart_etcd_plane(self, ctx, hosts):
        self.calls.append("restart_etcd_plane")

    def restart_control_plane(self, ctx, hosts):
        self.calls.append("restart_control_plane")

    def restart_worker_plane(self, ctx, hosts):
        self.calls.append(("restart_worker_plane", sorted(h.address for h in hosts)))

    def restart_cluster_pods(self, ctx, kube_cluster):
        self.calls.append("restart_cluster_pods")

    def read_csrs_and_keys_from_dir(self, cert_dir):
        self.calls.append(("read_csrs_and_keys_from_dir", cert_dir))
        return {}

    def generate_services_csrs(self, ctx, bundle, rke_config):
        self.calls.append("generate_services_csrs")
        bundle["kube-apiserver"] = CertificatePKI(name="kube-apiserver")

    def write_certificates(self, cert_dir, bundle):
        self.calls.append(("write_certificates", cert_dir, sorted(bundle)))


class RecordingProgress:
    """Progress callback that keeps every emitted step."""

    def __init__(self):
        self.events = []

    def __call__(self, step, message, status, reason=""):
        self.events.append((step, status, message))

    def steps(self):
        return [(step, status) for step, status, _ in self.events]


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("cloudadaptor.utils.time.sleep", lambda seconds: None)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        config_dir=str(tmp_path / "config"),
        default_kubernetes_version="v1.23.10-rancher1",
        task_workers=2,
        describe_workers=4,
        db=DBConfig(type="sqlite3", path=str(tmp_path / "db")),
    )


@pytest.fixture
def db(settings):
    database = Database.from_settings(settings)
    database.migrate()
    yield database
    database.dispose()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def progress():
    return RecordingProgress()


def fake_node(name, internal_ip, external_ip="", annotations=None):
    addresses = [SimpleNamespace(type="InternalIP", address=internal_ip),
                 SimpleNamespace(type="Hostname", address=name)]
    if external_ip:
        addresses.append(SimpleNamespace(type="ExternalIP", address=external_ip))
    return SimpleNamespace(metadata=SimpleNamespace(name=name, annotations=annotations),
                           status=SimpleNamespace(addresses=addresses))


class FakeVersionApi:
    def __init__(self, api_client):
        self.api = api_client

    def get_code(self, _request_timeout=None):
        if self.api.version_error is not None:
            raise self.api.version_error
        return SimpleNamespace(git_version=self.api.version)


class FakeCoreV1Api:
    def __init__(self, api_client):
        self.api = api_client

    def list_node(self, _request_timeout=None):
        if self.api.node_error is not None:
            raise self.api.node_error
        return SimpleNamespace(items=self.api.node_items())

    def read_namespaced_config_map(self, name, namespace, _request_timeout=None):
        from kubernetes.client.rest import ApiException
        if not self.api.region_installed:
            raise ApiException(status=404, reason="Not Found")
        return SimpleNamespace(metadata=SimpleNamespace(name=name, namespace=namespace))


class FakeApiClient:
    def __init__(self, version="v1.22.3", nodes=3, region_installed=False, version_error=None, node_error=None,
                 items=None):
        self.version = version
        self.nodes = nodes
        self.items = items
        self.region_installed = region_installed
        self.version_error = version_error
        self.node_error = node_error
        self.closed = False

    def node_items(self):
        if self.items is not None:
            return list(self.items)
        return [fake_node(f"node{i}", f"192.168.0.{i + 1}") for i in range(self.nodes)]

    def close(self):
        self.closed = True


@pytest.fixture
def fake_kube(monkeypatch):
    """Replace the kubernetes API classes used by the checker."""
    monkeypatch.setattr("cloudadaptor.health.client.VersionApi", FakeVersionApi)
    monkeypatch.setattr("cloudadaptor.health.client.CoreV1Api", FakeCoreV1Api)
    return FakeApiClient


def state_dir_files(path):
    if not os.path.isdir(path):
        return []
    return sorted(os.listdir(path))
