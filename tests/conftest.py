import dataclasses
import os
import sys

import pytest

# Ensure project root is importable (so `import main` works without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from vgr import db  # noqa: E402
from vgr.api_models import ConnectionSpec, GatewaySpec  # noqa: E402
from vgr.docker_ops import POD_RUNNING, ExecResult, Instance  # noqa: E402
from vgr.settings import settings  # noqa: E402


@pytest.fixture
def store(tmp_path, monkeypatch):
    """Point the store at an isolated sqlite file."""
    monkeypatch.setattr(db, "settings", dataclasses.replace(settings, db_path=str(tmp_path / "vgr.db")))
    db.init_db()
    return db


@pytest.fixture
def fast_settings():
    return dataclasses.replace(
        settings,
        settle_s=0,
        pod_missing_wait_s=0,
        pod_not_running_wait_s=0,
        exec_failure_wait_s=0,
        retry_delay_s=0,
        start_controller=False,
    )


class FakeRuntime:
    """Stands in for vgr.docker_ops in reconciler tests."""

    def __init__(self):
        self.applied = []
        self.removed = []
        self.instance = None
        self.exec_result = ExecResult(exit_code=0, stdout="", stderr="")
        self.exec_calls = []

    def apply_workload(self, descriptor):
        self.applied.append(descriptor)
        return []

    def remove_workload(self, name):
        self.removed.append(name)
        return 0

    def get_instance(self, name, ordinal=0):
        return self.instance

    def exec_in_container(self, container_id, argv):
        self.exec_calls.append((container_id, argv))
        return self.exec_result

    def run_instance(self, name, phase=POD_RUNNING):
        self.instance = Instance(name=f"{name}-0", phase=phase, containers={"ipsec": "cid-ipsec"})


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def sleeps():
    return []


def ssl_spec(**overrides) -> GatewaySpec:
    doc = {
        "subnet": "vpn-subnet",
        "cpu": "500m",
        "memory": "256Mi",
        "qosBandwidth": "20",
        "enableSslVpn": True,
        "ovpnCipher": "AES-256-GCM",
        "ovpnProto": "udp",
        "ovpnPort": 1149,
        "ovpnSubnetCidr": "10.240.0.0/255.255.0.0",
        "sslVpnImage": "kubeovn/ssl-vpn:v1",
        "sslSecret": "ssl-vpn-secret",
        "dhSecret": "dh-secret",
    }
    doc.update(overrides)
    return GatewaySpec.model_validate(doc)


def ipsec_spec(**overrides) -> GatewaySpec:
    doc = {
        "subnet": "vpn-subnet",
        "cpu": "1",
        "memory": "1Gi",
        "enableIpsecVpn": True,
        "ipsecVpnImage": "kubeovn/ipsec-vpn:v1",
        "ipsecSecret": "ipsec-secret",
    }
    doc.update(overrides)
    return GatewaySpec.model_validate(doc)


def conn_spec(vpn_gw: str, **overrides) -> ConnectionSpec:
    doc = {
        "vpnGw": vpn_gw,
        "auth": "pubkey",
        "ikeVersion": "2",
        "proposals": "default",
        "localCn": "moon.vpn.gw.com",
        "localPublicIp": "172.19.0.101",
        "localPrivateCidrs": "10.1.0.0/24",
        "remoteCn": "sun.vpn.gw.com",
        "remotePublicIp": "172.19.0.102",
        "remotePrivateCidrs": "10.2.0.0/24",
    }
    doc.update(overrides)
    return ConnectionSpec.model_validate(doc)
