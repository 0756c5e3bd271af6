import base64

import pytest
from fastapi.testclient import TestClient

import main
from conftest import conn_spec


def _basic_auth(user: str, password: str) -> dict:
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def api(store, fast_settings, monkeypatch):
    monkeypatch.setattr(main, "settings", fast_settings)
    with TestClient(main.app) as client:
        client.headers.update(_basic_auth(fast_settings.api_user, fast_settings.api_password))
        yield client


GATEWAY = {
    "spec": {
        "subnet": "vpn-subnet",
        "cpu": "500m",
        "memory": "256Mi",
        "enableIpsecVpn": True,
        "ipsecVpnImage": "kubeovn/ipsec-vpn:v1",
        "ipsecSecret": "ipsec-secret",
    }
}


def test_requires_basic_auth(store, fast_settings, monkeypatch):
    monkeypatch.setattr(main, "settings", fast_settings)
    with TestClient(main.app) as client:
        assert client.get("/gateways").status_code == 401
        assert client.get("/gateways", headers=_basic_auth("admin", "wrong")).status_code == 401
        assert client.get("/health").json() == {"status": "healthy"}


def test_apply_and_get_gateway(api):
    r = api.put("/gateways/gw1", json=GATEWAY)
    assert r.status_code == 200
    assert r.json()["spec"]["enableIpsecVpn"] is True
    assert r.json()["status"]["subnet"] == ""

    assert [g["name"] for g in api.get("/gateways").json()] == ["gw1"]
    assert api.get("/gateways/gw1").json()["spec"]["ipsecVpnImage"] == "kubeovn/ipsec-vpn:v1"
    assert api.get("/gateways/nope").status_code == 404


def test_apply_enqueues_gateway(api):
    api.put("/gateways/gw1", json=GATEWAY)
    assert main.controller.queue.get(timeout=0) == ("VpnGw", "gw1")


def test_user_can_not_overwrite_materialized_connections(api, store):
    api.put("/gateways/gw1", json=GATEWAY)
    gw = store.get_gateway("gw1")
    store.update_gateway_status("gw1", gw.status, ["conn-a"])

    body = {"spec": dict(GATEWAY["spec"], ipsecConnections=["forged"])}
    assert api.put("/gateways/gw1", json=body).json()["spec"]["ipsecConnections"] == ["conn-a"]


def test_delete_gateway(api):
    api.put("/gateways/gw1", json=GATEWAY)
    assert api.delete("/gateways/gw1").json() == {"deleted": "gw1"}
    assert api.delete("/gateways/gw1").status_code == 404


def test_connection_admission_defaults(api):
    spec = conn_spec("gw1", auth="", ikeVersion="", proposals="").to_doc()
    r = api.put("/connections/conn-a", json={"spec": spec})
    assert r.status_code == 200
    body = r.json()["spec"]
    assert (body["auth"], body["ikeVersion"], body["proposals"]) == ("pubkey", "2", "default")


def test_connection_admission_rejects_invalid(api):
    spec = conn_spec("", ikeVersion="5", remotePublicIp="").to_doc()
    r = api.put("/connections/conn-a", json={"spec": spec})
    assert r.status_code == 422
    fields = {e["field"] for e in r.json()["detail"]}
    assert fields == {"spec.vpnGw", "spec.ikeVersion", "spec.remotePublicIp"}


def test_connection_gateway_is_immutable(api):
    api.put("/connections/conn-a", json={"spec": conn_spec("gw1").to_doc()})
    r = api.put("/connections/conn-a", json={"spec": conn_spec("gw2").to_doc()})
    assert r.status_code == 422
    assert r.json()["detail"][0]["message"] == "ipsecConn vpn gw can not be changed"


def test_connection_change_enqueues_connection_and_gateway(api):
    api.put("/connections/conn-a", json={"spec": conn_spec("gw1").to_doc()})
    keys = {main.controller.queue.get(timeout=0), main.controller.queue.get(timeout=0)}
    assert keys == {("IpsecConn", "conn-a"), ("VpnGw", "gw1")}


def test_list_connections_by_gateway(api, store):
    api.put("/connections/conn-a", json={"spec": conn_spec("gw1").to_doc()})
    api.put("/connections/conn-b", json={"spec": conn_spec("gw2").to_doc()})
    store.patch_connection_labels("conn-a", {"vpn-gw": "gw1"})
    assert [c["name"] for c in api.get("/connections", params={"vpn_gw": "gw1"}).json()] == ["conn-a"]
    assert len(api.get("/connections").json()) == 2


def test_workload_and_events(api, store):
    assert api.get("/gateways/gw1/workload").status_code == 404
    store.create_workload("gw1", owner="gw1", descriptor={"name": "gw1"})
    assert api.get("/gateways/gw1/workload").json()["descriptor"] == {"name": "gw1"}

    api.put("/gateways/gw1", json=GATEWAY)
    events = api.get("/events", params={"name": "gw1"}).json()
    assert events and "applied vpn gw" in events[0]["message"]


def test_trigger_reconcile(api):
    assert api.post("/gateways/gw1/reconcile").status_code == 404
    api.put("/gateways/gw1", json=GATEWAY)
    assert api.post("/gateways/gw1/reconcile").status_code == 202
