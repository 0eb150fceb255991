import base64
import os
import threading

import pytest

from cloudadaptor import errors
from cloudadaptor.adaptor.rke.engine import EngineContext
from cloudadaptor.adaptor.types import INSTALL_FAILED, RUNNING, ConfigNode
from cloudadaptor.health import HealthChecker
from cloudadaptor.models import CreateKubernetesTask, CustomCluster, RKECluster, UpdateKubernetesTask
from cloudadaptor.repo.task import TASK_FAILURE, TASK_RUNNING, TASK_SUCCESS
from cloudadaptor.task import Task, TaskWorkerPool
from cloudadaptor.usecase import (
    CreateClusterReq,
    CreateKubernetesReq,
    InitRainbondRegionReq,
    PruneUpdateRKEConfigReq,
    UpdateKubernetesReq,
    decode_rke_config,
    encode_rke_config,
    new_usecase,
)

from conftest import ADMIN_KUBECONFIG, FakeApiClient, make_rke_config


@pytest.fixture
def usecase(settings, db, engine):
    uc = new_usecase(settings, db=db, engine=engine, workers=TaskWorkerPool(1))
    yield uc
    uc.workers.shutdown(wait=True, cancel=True)


def drain(usecase):
    """Wait for submitted tasks, then start a fresh pool."""
    usecase.workers.shutdown(wait=True, cancel=False)
    usecase.workers = TaskWorkerPool(1)


def rke_req(name="demo", **kwargs):
    return CreateKubernetesReq(name=name, provider_name="rke",
                               encoded_rke_config=encode_rke_config(make_rke_config(name=name, **kwargs)))


def test_decode_rke_config():
    config = decode_rke_config(encode_rke_config(make_rke_config()))
    assert len(config.nodes) == 3
    for bad in ("%%%", base64.b64encode(b"- just\n- a list\n").decode()):
        with pytest.raises(errors.BusinessError) as exc:
            decode_rke_config(bad)
        assert exc.value == errors.IncorrectRKEConfig


def test_create_rke_cluster_installs(usecase):
    task = usecase.create_kubernetes_cluster("E", rke_req())
    assert task.node_number == 3
    drain(usecase)

    assert usecase.create_tasks.get_task("E", task.task_id).status == TASK_SUCCESS
    cluster = usecase.rke_clusters.get_cluster("E", "demo")
    assert cluster.state == RUNNING
    assert cluster.cluster_id == task.cluster_id
    steps = {e.step_type: e.status for e in usecase.list_task_events("E", task.task_id)}
    assert steps == {"Init": "success", "InitClusterConfig": "success", "InstallKubernetes": "success"}
    assert usecase.get_kubeconfig("E", "demo", "rke")


def test_create_rejects_invalid_request(usecase):
    with pytest.raises(errors.BusinessError) as exc:
        usecase.create_kubernetes_cluster("E", CreateKubernetesReq(name="demo", encoded_rke_config="%%%"))
    assert exc.value == errors.IncorrectRKEConfig

    with pytest.raises(errors.BusinessError) as exc:
        usecase.create_kubernetes_cluster("E", rke_req(addresses=("127.0.0.1",)))
    assert exc.value == errors.ClusterNodeIPInvalid
    assert usecase.rke_clusters.list_cluster("E") == []

    with pytest.raises(errors.BusinessError) as exc:
        usecase.create_kubernetes_cluster("E", CreateKubernetesReq(name="x", provider_name="aws"))
    assert exc.value == errors.ProviderNotSupported


def test_create_duplicate_name(usecase):
    usecase.create_kubernetes_cluster("E", rke_req())
    with pytest.raises(errors.BusinessError) as exc:
        usecase.create_kubernetes_cluster("E", rke_req())
    assert exc.value == errors.ClusterNameConflict


def test_create_custom_cluster(usecase):
    req = CreateKubernetesReq(name="imp", provider_name="custom", kubeconfig="apiVersion: v1",
                              eip=["1.1.1.1", "2.2.2.2"])
    task = usecase.create_kubernetes_cluster("E", req)
    drain(usecase)
    assert usecase.create_tasks.get_task("E", task.task_id).status == TASK_SUCCESS
    assert usecase.custom_clusters.get_cluster("E", "imp").eip == "1.1.1.1,2.2.2.2"


def test_install_refused_for_running_cluster(usecase):
    usecase.rke_clusters.create_cluster(RKECluster(eid="E", name="live", stats=RUNNING))
    with pytest.raises(errors.BusinessError) as exc:
        usecase.install_cluster("E", "live")
    assert exc.value == errors.NotSupportReinstall


def test_install_refused_while_task_running(usecase):
    cluster = usecase.rke_clusters.create_cluster(
        RKECluster(eid="E", name="demo", stats=INSTALL_FAILED, rke_config=encode_rke_config(make_rke_config()))
    )
    usecase.create_tasks.create(CreateKubernetesTask(eid="E", provider_name="rke", cluster_id=cluster.cluster_id,
                                                     status=TASK_RUNNING))
    with pytest.raises(errors.BusinessError) as exc:
        usecase.install_cluster("E", "demo")
    assert exc.value == errors.LastTaskNotComplete


def test_install_retry_reads_cluster_file(usecase, settings):
    usecase.rke_clusters.create_cluster(
        RKECluster(eid="E", name="demo", stats=INSTALL_FAILED, rke_config=encode_rke_config(make_rke_config()))
    )
    legacy = os.path.join(settings.config_dir, "rke", "demo")
    os.makedirs(legacy)
    with open(os.path.join(legacy, "cluster.yml"), "w") as f:
        f.write(make_rke_config(addresses=("10.0.0.1",)).to_yaml())

    task = usecase.install_cluster("E", "demo")
    assert task.node_number == 1
    drain(usecase)
    assert usecase.rke_clusters.get_cluster("E", "demo").state == RUNNING


def test_install_rejects_broken_cluster_file(usecase, settings):
    usecase.rke_clusters.create_cluster(RKECluster(eid="E", name="demo", stats=INSTALL_FAILED))
    path = os.path.join(settings.config_dir, "enterprise", "E", "rke", "demo")
    os.makedirs(path)
    with open(os.path.join(path, "cluster.yml"), "w") as f:
        f.write("- not\n- a mapping\n")
    with pytest.raises(errors.BusinessError) as exc:
        usecase.install_cluster("E", "demo")
    assert exc.value == errors.IncorrectRKEConfig

def test_install_without_any_spec(usecase):
    usecase.rke_clusters.create_cluster(RKECluster(eid="E", name="demo", stats=INSTALL_FAILED))
    with pytest.raises(errors.BusinessError) as exc:
        usecase.install_cluster("E", "demo")
    assert exc.value == errors.RKEConfigLost


def test_update_cluster_versions(usecase):
    created = usecase.create_kubernetes_cluster("E", rke_req())
    drain(usecase)

    bigger = encode_rke_config(make_rke_config(addresses=("10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4")))
    first = usecase.update_kubernetes_cluster("E", UpdateKubernetesReq(cluster_id="demo", encoded_rke_config=bigger))
    assert first.version == 1
    assert first.node_number == 4
    drain(usecase)

    assert usecase.update_tasks.get_task("E", first.task_id).status == TASK_SUCCESS
    second = usecase.update_kubernetes_cluster("E", UpdateKubernetesReq(cluster_id="demo", encoded_rke_config=bigger))
    assert second.version == 2
    drain(usecase)

    assert usecase.get_update_kubernetes_task("E", "demo").task_id == second.task_id
    last = usecase.get_last_create_kubernetes_task("E", "rke")
    assert last.task_id == second.task_id
    assert last.name == "demo"
    assert last.cluster_id == created.cluster_id
    assert usecase.rke_clusters.get_cluster("E", "demo").rke_config == bigger


def test_update_refused_for_custom(usecase):
    req = UpdateKubernetesReq(cluster_id="demo", provider_name="custom", encoded_rke_config="")
    with pytest.raises(errors.BusinessError) as exc:
        usecase.update_kubernetes_cluster("E", req)
    assert exc.value == errors.NotSupportUpdateKubernetes


def test_last_create_task_without_updates(usecase):
    assert usecase.get_last_create_kubernetes_task("E", "rke") is None
    task = usecase.create_kubernetes_cluster("E", rke_req())
    drain(usecase)
    assert usecase.get_last_create_kubernetes_task("E", "rke").task_id == task.task_id


def test_update_refused_while_update_running(usecase):
    cluster = usecase.rke_clusters.create_cluster(RKECluster(eid="E", name="demo", stats=RUNNING))
    usecase.update_tasks.create(UpdateKubernetesTask(eid="E", provider_name="rke", cluster_id=cluster.cluster_id,
                                                     version=1, status=TASK_RUNNING))
    req = UpdateKubernetesReq(cluster_id="demo", encoded_rke_config=encode_rke_config(make_rke_config()))
    with pytest.raises(errors.BusinessError) as exc:
        usecase.update_kubernetes_cluster("E", req)
    assert exc.value == errors.LastTaskNotComplete


class HeldWorkers:
    """Accepts tasks without running them, so they stay running."""

    def __init__(self):
        self.tasks = []

    def submit(self, task, ctx=None):
        self.tasks.append(task)

    def shutdown(self, wait=True, cancel=True):
        pass


def test_concurrent_installs_start_one_task(settings, db, engine, monkeypatch):
    uc = new_usecase(settings, db=db, engine=engine, workers=HeldWorkers())
    uc.rke_clusters.create_cluster(
        RKECluster(eid="E", name="demo", stats=INSTALL_FAILED, rke_config=encode_rke_config(make_rke_config()))
    )
    # both callers must read the task table before either inserts
    barrier = threading.Barrier(2)
    latest = uc.create_tasks.get_latest_by_cluster_id

    def get_latest(eid, cluster_id):
        task = latest(eid, cluster_id)
        try:
            barrier.wait(timeout=1)
        except threading.BrokenBarrierError:
            pass
        return task

    monkeypatch.setattr(uc.create_tasks, "get_latest_by_cluster_id", get_latest)
    results = []

    def install():
        try:
            results.append(uc.install_cluster("E", "demo").task_id)
        except errors.BusinessError as e:
            results.append(e)

    threads = [threading.Thread(target=install) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert len([r for r in results if isinstance(r, str)]) == 1
    assert [r for r in results if not isinstance(r, str)] == [errors.LastTaskNotComplete]
    assert len(uc.workers.tasks) == 1
    assert [t.status for t in uc.create_tasks.list_unfinished("E")] == [TASK_RUNNING]


def test_create_from_node_list(usecase):
    nodes = [ConfigNode(ip=f"10.0.0.{i}", roles=["controlplane", "etcd", "worker"]) for i in (1, 2, 3)]
    task = usecase.create_kubernetes_cluster("E", CreateKubernetesReq(name="demo", nodes=nodes))
    assert task.node_number == 3
    stored = decode_rke_config(usecase.rke_clusters.get_cluster("E", "demo").rke_config)
    assert [n.address for n in stored.nodes] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
    assert stored.network_plugin == "flannel"
    drain(usecase)
    assert usecase.create_tasks.get_task("E", task.task_id).status == TASK_SUCCESS

    with pytest.raises(errors.BusinessError) as exc:
        usecase.create_kubernetes_cluster("E", CreateKubernetesReq(name="empty"))
    assert exc.value == errors.IncorrectRKEConfig


def test_prune_update_builds_spec_from_nodes(usecase):
    nodes = [ConfigNode(ip="10.0.0.1", internalIP="192.168.0.1", roles=["controlplane", "etcd", "worker"])]
    resp = usecase.prune_update_rke_config(PruneUpdateRKEConfigReq(nodes=nodes))
    config = decode_rke_config(resp.encoded_rke_config)
    assert config.ignore_docker_version is True
    assert [(n.address, n.internal_address, n.user, n.port) for n in config.nodes] == [
        ("10.0.0.1", "192.168.0.1", "docker", "22")]
    assert [(n.ip, n.internal_ip, n.roles) for n in resp.nodes] == [
        ("10.0.0.1", "192.168.0.1", ["controlplane", "etcd", "worker"])]


def test_prune_update_replaces_nodes_of_encoded_spec(usecase):
    encoded = encode_rke_config(make_rke_config(kubernetes_version="v1.23.10-rancher1"))
    resp = usecase.prune_update_rke_config(PruneUpdateRKEConfigReq(encoded_rke_config=encoded))
    kept = decode_rke_config(resp.encoded_rke_config)
    assert len(kept.nodes) == 3
    assert kept.kubernetes_version == "v1.23.10-rancher1"
    assert kept.ignore_docker_version is True

    nodes = [ConfigNode(ip="10.0.0.9", roles=["worker"])]
    resp = usecase.prune_update_rke_config(PruneUpdateRKEConfigReq(encoded_rke_config=encoded, nodes=nodes))
    replaced = decode_rke_config(resp.encoded_rke_config)
    assert [n.address for n in replaced.nodes] == ["10.0.0.9"]
    assert replaced.kubernetes_version == "v1.23.10-rancher1"
    assert replaced.cluster_name == "demo"

    with pytest.raises(errors.BusinessError) as exc:
        usecase.prune_update_rke_config(PruneUpdateRKEConfigReq(encoded_rke_config="%%%"))
    assert exc.value == errors.IncorrectRKEConfig


def test_rke_node_list(usecase):
    usecase.create_kubernetes_cluster("E", rke_req())
    drain(usecase)
    nodes = usecase.get_rke_node_list("E", "demo")
    assert [n.ip for n in nodes] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
    with pytest.raises(errors.BusinessError) as exc:
        usecase.get_rke_node_list("E", "missing")
    assert exc.value == errors.ClusterNotFound


def test_generate_csrs_for_installed_cluster(usecase, engine, settings):
    usecase.create_kubernetes_cluster("E", rke_req())
    drain(usecase)
    cert_dir = usecase.generate_csrs("E", "demo")
    assert cert_dir == os.path.join(settings.config_dir, "enterprise", "E", "rke", "demo", "cluster_certs")
    assert ("write_certificates", cert_dir, ["kube-apiserver"]) in engine.calls


def test_generate_csrs_without_cluster_file(usecase):
    usecase.rke_clusters.create_cluster(RKECluster(eid="E", name="demo", stats=INSTALL_FAILED))
    with pytest.raises(errors.BusinessError) as exc:
        usecase.generate_csrs("E", "demo")
    assert exc.value == errors.RKEConfigLost


def test_create_cluster_directly(usecase, engine):
    cluster = usecase.create_cluster("E", CreateClusterReq(encoded_rke_config=encode_rke_config(
        make_rke_config(name="direct"))))
    assert cluster.name == "direct"
    assert cluster.state == RUNNING
    assert "cluster_init" in engine.calls
    assert usecase.rke_clusters.list_cluster("E") == []
    assert usecase.create_cluster("E", CreateClusterReq(provider_name="custom", encoded_rke_config=encode_rke_config(
        make_rke_config()))) is None


class WaitingTask(Task):

    def __init__(self, task_id):
        super().__init__("E", task_id, None, lambda *args: None)
        self.started = threading.Event()
        self.cancelled = threading.Event()

    def run(self, ctx):
        self.started.set()
        if ctx.cancel_event.wait(5):
            self.cancelled.set()


def test_cancel_running_task(usecase):
    task = WaitingTask("t1")
    future = usecase.workers.submit(task, EngineContext())
    assert task.started.wait(5)
    assert usecase.running_tasks() == ["t1"]
    assert usecase.cancel_task("t1") is True
    assert usecase.cancel_task("unknown") is False
    future.result(10)
    assert task.cancelled.is_set()
    assert usecase.running_tasks() == []


@pytest.fixture
def region_usecase(settings, db, engine, fake_kube):
    installed = []
    checker = HealthChecker(client_factory=lambda kubeconfig: FakeApiClient(nodes=3))
    uc = new_usecase(settings, db=db, engine=engine, workers=TaskWorkerPool(1), checker=checker,
                     region_installer=lambda ctx, kubeconfig, init: installed.append(init))
    uc.custom_clusters.create_cluster(CustomCluster(eid="E", name="imp", cluster_id="c1",
                                                    kube_config=ADMIN_KUBECONFIG, eip="1.1.1.1"))
    uc.installed = installed
    yield uc
    uc.workers.shutdown(wait=True, cancel=True)


def test_init_region_flow(region_usecase):
    uc = region_usecase
    req = InitRainbondRegionReq(cluster_id="c1", provider_name="custom")
    task = uc.init_rainbond_region("E", req)
    assert task.cluster_id == "c1"
    drain(uc)

    assert uc.get_init_rainbond_task("E", "c1").status == TASK_SUCCESS
    assert [init.eips for init in uc.installed] == [["1.1.1.1"]]
    assert uc.list_running_init_tasks("E") == []
    steps = {e.step_type: e.status for e in uc.list_task_events("E", task.task_id)}
    assert steps["InitRainbondRegion"] == "success"

    with pytest.raises(errors.BusinessError) as exc:
        uc.init_rainbond_region("E", req)
    assert exc.value == errors.LastTaskNotComplete
    retried = uc.init_rainbond_region("E", InitRainbondRegionReq(cluster_id="c1", provider_name="custom",
                                                                  retry=True))
    assert retried.task_id != task.task_id
    drain(uc)


def test_init_region_retry_refused_while_running(region_usecase):
    uc = region_usecase
    uc.workers = HeldWorkers()
    task = uc.init_rainbond_region("E", InitRainbondRegionReq(cluster_id="c1", provider_name="custom"))
    assert [t.task_id for t in uc.list_running_init_tasks("E")] == [task.task_id]
    with pytest.raises(errors.BusinessError) as exc:
        uc.init_rainbond_region("E", InitRainbondRegionReq(cluster_id="c1", provider_name="custom", retry=True))
    assert exc.value == errors.LastTaskNotComplete

    updated = uc.update_init_rainbond_task_status("E", task.task_id, TASK_FAILURE)
    assert updated.status == TASK_FAILURE
    assert uc.list_running_init_tasks("E") == []
    with pytest.raises(LookupError):
        uc.update_init_rainbond_task_status("E", "unknown", TASK_FAILURE)


def test_init_region_unknown_provider(region_usecase):
    with pytest.raises(errors.BusinessError) as exc:
        region_usecase.init_rainbond_region("E", InitRainbondRegionReq(cluster_id="c1", provider_name="aws"))
    assert exc.value == errors.ProviderNotSupported
