import pytest

from conftest import conn_spec, ipsec_spec, ssl_spec
from vgr.connections import VPN_GW_LABEL
from vgr.db import StoreError
from vgr.docker_ops import POD_PENDING, ExecResult
from vgr.reconciler import GatewayReconciler
from vgr.runtime import SyncState


@pytest.fixture
def reconciler(store, fake_runtime, sleeps, fast_settings):
    return GatewayReconciler(runtime=fake_runtime, sleep=sleeps.append, config=fast_settings)


def _labeled_conn(store, name, gw):
    store.put_connection(name, conn_spec(gw))
    store.patch_connection_labels(name, {VPN_GW_LABEL: gw})


def test_missing_gateway_cleans_up_workload(reconciler, store, fake_runtime):
    store.create_workload("gone", owner="gone", descriptor={"name": "gone"})
    result = reconciler.reconcile("gone")
    assert result.state is SyncState.SUCCESS
    assert store.get_workload("gone") is None
    assert fake_runtime.removed == ["gone"]


def test_invalid_spec_is_terminal_and_creates_nothing(reconciler, store, fake_runtime):
    store.put_gateway("gw1", ssl_spec(ovpnProto="icmp"))
    result = reconciler.reconcile("gw1")
    assert result.state is SyncState.ERROR_NO_RETRY
    assert store.get_workload("gw1") is None
    assert fake_runtime.applied == []


def test_ssl_gateway_first_pass_creates_workload(reconciler, store, fake_runtime, sleeps):
    store.put_gateway("gw1", ssl_spec())
    result = reconciler.reconcile("gw1")
    assert result.state is SyncState.SUCCESS

    wl = store.get_workload("gw1")
    assert wl is not None and wl.owner == "gw1"
    assert [c["name"] for c in wl.descriptor["template"]["containers"]] == ["ssl"]
    assert len(fake_runtime.applied) == 1
    assert sleeps == [0]
    assert fake_runtime.exec_calls == []

    gw = store.get_gateway("gw1")
    assert gw.status.subnet == "vpn-subnet"
    assert gw.status.enable_ssl_vpn is True


def test_second_pass_without_changes_does_not_rewrite(reconciler, store, fake_runtime):
    store.put_gateway("gw1", ssl_spec())
    reconciler.reconcile("gw1")
    gw_version = store.get_gateway("gw1").resource_version
    wl_version = store.get_workload("gw1").resource_version

    assert reconciler.reconcile("gw1").state is SyncState.SUCCESS
    assert store.get_gateway("gw1").resource_version == gw_version
    assert store.get_workload("gw1").resource_version == wl_version
    # the stored descriptor is re-applied so dead containers get replaced
    assert fake_runtime.applied[-1] == store.get_workload("gw1").descriptor


def test_spec_change_regenerates_workload(reconciler, store):
    store.put_gateway("gw1", ssl_spec())
    reconciler.reconcile("gw1")
    store.put_gateway("gw1", ssl_spec(ovpnCipher="AES-128-GCM"))

    assert reconciler.reconcile("gw1").state is SyncState.SUCCESS
    env = store.get_workload("gw1").descriptor["template"]["containers"][0]["env"]
    assert {"name": "OVPN_CIPHER", "value": "AES-128-GCM"} in env
    assert store.get_gateway("gw1").status.ovpn_cipher == "AES-128-GCM"


def test_subnet_change_after_first_pass_is_terminal(reconciler, store):
    store.put_gateway("gw1", ssl_spec())
    reconciler.reconcile("gw1")
    store.put_gateway("gw1", ssl_spec(subnet="another"))
    assert reconciler.reconcile("gw1").state is SyncState.ERROR_NO_RETRY


def test_ipsec_gateway_waits_for_running_pod(reconciler, store, fake_runtime):
    store.put_gateway("gw1", ipsec_spec())
    _labeled_conn(store, "conn-a", "gw1")
    _labeled_conn(store, "conn-b", "gw1")

    fake_runtime.run_instance("gw1", phase=POD_PENDING)
    result = reconciler.reconcile("gw1")
    assert result.state is SyncState.ERROR
    assert fake_runtime.exec_calls == []
    # nothing was applied successfully yet, so status stays empty
    assert store.get_gateway("gw1").status.ipsec_connections == []

    fake_runtime.run_instance("gw1")
    assert reconciler.reconcile("gw1").state is SyncState.SUCCESS
    ((_, argv),) = fake_runtime.exec_calls
    assert "conn-a pubkey 2 default" in argv[2]
    assert argv[2].count(",") == 2

    gw = store.get_gateway("gw1")
    assert gw.spec.ipsec_connections == ["conn-a", "conn-b"]
    assert gw.status.ipsec_connections == ["conn-a", "conn-b"]
    assert gw.status.enable_ipsec_vpn is True


def test_ipsec_refresh_is_repeated_every_pass(reconciler, store, fake_runtime):
    store.put_gateway("gw1", ipsec_spec())
    _labeled_conn(store, "conn-a", "gw1")
    fake_runtime.run_instance("gw1")
    reconciler.reconcile("gw1")
    reconciler.reconcile("gw1")
    assert len(fake_runtime.exec_calls) == 2


def test_refresh_failure_is_retryable(reconciler, store, fake_runtime):
    store.put_gateway("gw1", ipsec_spec())
    _labeled_conn(store, "conn-a", "gw1")
    fake_runtime.run_instance("gw1")
    fake_runtime.exec_result = ExecResult(exit_code=1, stdout="", stderr="charon not ready")
    assert reconciler.reconcile("gw1").state is SyncState.ERROR


def test_removed_connections_clear_the_list(reconciler, store, fake_runtime):
    store.put_gateway("gw1", ipsec_spec())
    _labeled_conn(store, "conn-a", "gw1")
    fake_runtime.run_instance("gw1")
    reconciler.reconcile("gw1")
    store.delete_connection("conn-a")

    assert reconciler.reconcile("gw1").state is SyncState.SUCCESS
    assert len(fake_runtime.exec_calls) == 1
    assert store.get_gateway("gw1").status.ipsec_connections == []


def test_only_pushed_names_are_recorded(reconciler, store, fake_runtime):
    store.put_gateway("gw1", ipsec_spec())
    _labeled_conn(store, "conn-a", "gw1")
    store.put_connection("drifted", conn_spec("gw2"))
    store.patch_connection_labels("drifted", {VPN_GW_LABEL: "gw1"})
    fake_runtime.run_instance("gw1")

    reconciler.reconcile("gw1")
    assert store.get_gateway("gw1").status.ipsec_connections == ["conn-a"]


def test_store_failure_is_retryable(reconciler, store, monkeypatch):
    store.put_gateway("gw1", ssl_spec())

    def broken(name):
        raise StoreError("database is locked")

    monkeypatch.setattr(store, "get_workload", broken)
    assert reconciler.reconcile("gw1").state is SyncState.ERROR


def test_runtime_failure_is_retryable(reconciler, store, fake_runtime):
    store.put_gateway("gw1", ssl_spec())

    def broken(descriptor):
        raise RuntimeError("Docker is not available.")

    fake_runtime.apply_workload = broken
    assert reconciler.reconcile("gw1").state is SyncState.ERROR
