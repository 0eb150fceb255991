import pytest
from fastapi.testclient import TestClient

from cloudadaptor import errors
from cloudadaptor.adaptor.factory import AdaptorFactory
from cloudadaptor.api.main import create_app
from cloudadaptor.health import HealthChecker
from cloudadaptor.task import TaskWorkerPool
from cloudadaptor.usecase import ClusterUsecase, encode_rke_config

from conftest import ADMIN_KUBECONFIG, FakeApiClient, make_rke_config

API_KEY = "test-key"
HEADERS = {"X-API-Key": API_KEY}


@pytest.fixture
def api_client(fake_kube):
    return FakeApiClient(version="v1.23.10", nodes=3)


@pytest.fixture
def usecase(db, settings, engine, api_client):
    checker = HealthChecker(client_factory=lambda kubeconfig: api_client)
    uc = ClusterUsecase(db, settings, AdaptorFactory(db, settings, engine=engine, checker=checker), TaskWorkerPool(1))
    yield uc
    uc.workers.shutdown(wait=True, cancel=True)


@pytest.fixture
def client(usecase):
    return TestClient(create_app(usecase, API_KEY))


def create_body(name="demo"):
    return {"name": name, "provider_name": "rke", "encoded_rke_config": encode_rke_config(make_rke_config(name=name))}


def wait_for_tasks(usecase):
    usecase.workers.shutdown(wait=True, cancel=False)
    usecase.workers = TaskWorkerPool(1)


def test_api_key_required(client):
    response = client.get("/enterprises/E/kclusters")
    assert response.status_code == 403
    assert client.get("/enterprises/E/kclusters", headers={"X-API-Key": "wrong"}).status_code == 403
    assert client.get("/healthz").status_code == 200


def test_create_list_and_events(client, usecase):
    response = client.post("/enterprises/E/kclusters", json=create_body(), headers=HEADERS)
    assert response.status_code == 200
    task = response.json()
    assert task["task_id"]
    assert task["node_number"] == 3
    wait_for_tasks(usecase)

    clusters = client.get("/enterprises/E/kclusters", headers=HEADERS).json()
    assert [(c["name"], c["state"], c["size"]) for c in clusters] == [("demo", "running", 3)]

    events = client.get(f"/enterprises/E/tasks/{task['task_id']}/events", headers=HEADERS).json()
    assert {e["step_type"]: e["status"] for e in events}["InstallKubernetes"] == "success"

    kubeconfig = client.get("/enterprises/E/kclusters/demo/kubeconfig", headers=HEADERS).json()
    assert kubeconfig == {"config": ADMIN_KUBECONFIG}

    last = client.get("/enterprises/E/last-ck-task", headers=HEADERS).json()
    assert last["task_id"] == task["task_id"]
    assert last["status"] == "success"


def test_business_errors_are_rendered(client):
    response = client.get("/enterprises/E/kclusters/missing", headers=HEADERS)
    assert response.status_code == 404
    assert response.json() == {"code": errors.ClusterNotFound.code, "msg": errors.ClusterNotFound.msg}

    bad = dict(create_body(), encoded_rke_config="%%%")
    response = client.post("/enterprises/E/kclusters", json=bad, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == errors.IncorrectRKEConfig.code

    response = client.get("/enterprises/E/kclusters?provider_name=aws", headers=HEADERS)
    assert response.json()["code"] == errors.ProviderNotSupported.code


def test_delete_gated(client, usecase, api_client):
    client.post("/enterprises/E/kclusters", json=create_body(), headers=HEADERS)
    wait_for_tasks(usecase)
    api_client.region_installed = True
    response = client.delete("/enterprises/E/kclusters/demo", headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == errors.ClusterNotAllowDelete.code

    api_client.region_installed = False
    assert client.delete("/enterprises/E/kclusters/demo", headers=HEADERS).status_code == 200
    assert client.get("/enterprises/E/kclusters", headers=HEADERS).json() == []


def test_external_step_event(client, usecase):
    task = client.post("/enterprises/E/kclusters", json=create_body(), headers=HEADERS).json()
    wait_for_tasks(usecase)
    body = {"step_type": "InitRainbondRegion", "message": "region ready", "status": "success"}
    response = client.post(f"/enterprises/E/tasks/{task['task_id']}/events", json=body, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["message"] == "region ready"


def test_update_and_install_routes(client, usecase):
    client.post("/enterprises/E/kclusters", json=create_body(), headers=HEADERS)
    wait_for_tasks(usecase)

    response = client.post("/enterprises/E/kclusters/demo/install", headers=HEADERS)
    assert response.json()["code"] == errors.NotSupportReinstall.code

    body = {"cluster_id": "demo", "encoded_rke_config": encode_rke_config(make_rke_config())}
    update = client.put("/enterprises/E/kclusters", json=body, headers=HEADERS).json()
    assert update["version"] == 1
    wait_for_tasks(usecase)
    latest = client.get("/enterprises/E/update-cluster/demo", headers=HEADERS).json()
    assert latest["task_id"] == update["task_id"]
    assert latest["status"] == "success"


def test_prune_update_and_node_routes(client, usecase):
    body = {"nodes": [{"ip": "10.0.0.1", "internalIP": "192.168.0.1", "roles": ["controlplane", "etcd", "worker"]}]}
    response = client.post("/enterprises/E/kclusters/prune-update-rkeconfig", json=body, headers=HEADERS)
    assert response.status_code == 200
    pruned = response.json()
    assert [(n["ip"], n["internalIP"]) for n in pruned["nodes"]] == [("10.0.0.1", "192.168.0.1")]
    assert pruned["encoded_rke_config"]

    client.post("/enterprises/E/kclusters", json=create_body(), headers=HEADERS)
    wait_for_tasks(usecase)
    nodes = client.get("/enterprises/E/kclusters/demo/nodes", headers=HEADERS).json()
    assert [n["ip"] for n in nodes] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
    csrs = client.post("/enterprises/E/kclusters/demo/csrs", headers=HEADERS).json()
    assert csrs["cert_dir"].endswith("cluster_certs")


def test_init_region_routes(client, usecase):
    body = {"name": "imp", "provider_name": "custom", "kubeconfig": ADMIN_KUBECONFIG, "eip": ["1.1.1.1"]}
    client.post("/enterprises/E/kclusters", json=body, headers=HEADERS)
    wait_for_tasks(usecase)

    init = {"cluster_id": "imp", "provider_name": "custom"}
    task = client.post("/enterprises/E/init-cluster", json=init, headers=HEADERS).json()
    wait_for_tasks(usecase)
    # no region installer is wired into this app
    latest = client.get("/enterprises/E/init-task/imp", headers=HEADERS).json()
    assert latest["task_id"] == task["task_id"]
    assert latest["status"] == "failure"
    events = client.get(f"/enterprises/E/tasks/{task['task_id']}/events", headers=HEADERS).json()
    assert {e["step_type"]: e["status"] for e in events}["InitRainbondRegionOperator"] == "failure"

    response = client.post("/enterprises/E/init-cluster", json=init, headers=HEADERS)
    assert response.json()["code"] == errors.LastTaskNotComplete.code

    updated = client.put(f"/enterprises/E/init-tasks/{task['task_id']}/status", json={"status": "running"},
                         headers=HEADERS).json()
    assert updated["status"] == "running"
    running = client.get("/enterprises/E/init-tasks", headers=HEADERS).json()
    assert [t["task_id"] for t in running] == [task["task_id"]]
    assert client.put("/enterprises/E/init-tasks/unknown/status", json={"status": "running"},
                      headers=HEADERS).status_code == 404


def test_worker_routes(client):
    assert client.get("/tasks/running", headers=HEADERS).json() == []
    assert client.post("/tasks/t1/cancel", headers=HEADERS).json() == {"task_id": "t1", "cancelled": False}
