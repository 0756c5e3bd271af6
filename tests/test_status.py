from conftest import ipsec_spec, ssl_spec
from vgr.api_models import Affinity, GatewayStatus, Toleration
from vgr.status import reconcile_status


def test_first_pass_copies_spec_into_status():
    spec, status = ssl_spec(ip="10.0.1.5"), GatewayStatus()
    assert reconcile_status(spec, status) is True
    assert status.subnet == "vpn-subnet"
    assert status.ip == "10.0.1.5"
    assert status.replicas == 1
    assert status.enable_ssl_vpn is True
    assert status.ovpn_cipher == "AES-256-GCM"
    assert status.ovpn_port == 1149


def test_second_pass_is_a_noop():
    spec, status = ssl_spec(selector=["zone:a"], tolerations=[Toleration(key="k")]), GatewayStatus()
    reconcile_status(spec, status)
    assert reconcile_status(spec, status) is False
    assert reconcile_status(spec, status, None) is False


def test_subnet_is_only_initialized():
    spec, status = ssl_spec(), GatewayStatus(subnet="original")
    reconcile_status(spec, status)
    assert status.subnet == "original"


def test_dependent_ssl_field_change_is_detected():
    spec, status = ssl_spec(), GatewayStatus()
    reconcile_status(spec, status)
    spec.ovpn_cipher = "AES-128-GCM"
    assert reconcile_status(spec, status) is True
    assert status.ovpn_cipher == "AES-128-GCM"


def test_structural_fields_compare_by_value():
    spec, status = ssl_spec(affinity=Affinity(pod_affinity={"a": [1, 2]})), GatewayStatus()
    reconcile_status(spec, status)
    # equal content, different objects
    spec.affinity = Affinity(pod_affinity={"a": [1, 2]})
    spec.tolerations = [Toleration(key=t.key) for t in spec.tolerations]
    assert reconcile_status(spec, status) is False

    spec.selector = ["zone:b"]
    assert reconcile_status(spec, status) is True
    assert status.selector == ["zone:b"]


def test_status_does_not_alias_spec_lists():
    spec, status = ssl_spec(selector=["zone:a"]), GatewayStatus()
    reconcile_status(spec, status)
    spec.selector.append("disk:ssd")
    assert status.selector == ["zone:a"]
    assert reconcile_status(spec, status) is True


def test_ipsec_with_connections_always_reports_change():
    spec, status = ipsec_spec(), GatewayStatus()
    assert reconcile_status(spec, status, ["conn-a", "conn-b"]) is True
    assert spec.ipsec_connections == ["conn-a", "conn-b"]
    assert status.ipsec_connections == ["conn-a", "conn-b"]

    # unchanged list still counts as a change so the refresh is retried
    assert reconcile_status(spec, status, ["conn-a", "conn-b"]) is True
    # without a list the pass is idempotent
    assert reconcile_status(spec, status) is False


def test_connections_ignored_when_ipsec_disabled():
    spec, status = ssl_spec(), GatewayStatus()
    reconcile_status(spec, status)
    assert reconcile_status(spec, status, ["conn-a"]) is False
    assert spec.ipsec_connections == []
