from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import Any

from .api_models import GatewaySpec

SSL_VPN_SERVER = "ssl"
IPSEC_VPN_SERVER = "ipsec"

SSL_SECRET_PATH = "/etc/ovpn/certs"
DH_SECRET_PATH = "/etc/ovpn/dh"
IPSEC_VPN_SECRET_PATH = "/etc/ipsec/certs"

SSL_VPN_STARTUP_CMD = "/etc/openvpn/setup/configure.sh"
IPSEC_VPN_STARTUP_CMD = "/usr/sbin/charon-systemd"

ENABLE_SSL_VPN_LABEL = "enable-ssl-vpn"
ENABLE_IPSEC_VPN_LABEL = "enable-ipsec-vpn"

LOGICAL_SWITCH_ANNOTATION = "ovn.kubernetes.io/logical_switch"
IP_ADDRESS_ANNOTATION = "ovn.kubernetes.io/ip_address"
INGRESS_RATE_ANNOTATION = "ovn.kubernetes.io/ingress_rate"
EGRESS_RATE_ANNOTATION = "ovn.kubernetes.io/egress_rate"

IPSEC_PROTO = "UDP"
IPSEC_PORTS = (("isakmp", 500), ("bootpc", 68), ("nat", 4500))

OVPN_PROTO_KEY = "OVPN_PROTO"
OVPN_PORT_KEY = "OVPN_PORT"
OVPN_CIPHER_KEY = "OVPN_CIPHER"
OVPN_SUBNET_CIDR_KEY = "OVPN_SUBNET_CIDR"

OWNER_KIND = "VpnGw"
ROLLING_UPDATE = "RollingUpdate"


@dataclass(frozen=True)
class ContainerPort:
    name: str
    container_port: int
    protocol: str


@dataclass(frozen=True)
class EnvVar:
    name: str
    value: str


@dataclass(frozen=True)
class VolumeMount:
    name: str
    mount_path: str
    read_only: bool = True


@dataclass(frozen=True)
class Resources:
    requests: dict[str, str]
    limits: dict[str, str]


@dataclass(frozen=True)
class SecurityContext:
    # Tunnel devices need a privileged container.
    privileged: bool = True
    allow_privilege_escalation: bool = True


@dataclass(frozen=True)
class Container:
    name: str
    image: str
    command: list[str]
    ports: list[ContainerPort]
    env: list[EnvVar]
    volume_mounts: list[VolumeMount]
    resources: Resources
    security_context: SecurityContext = field(default_factory=SecurityContext)
    image_pull_policy: str = "IfNotPresent"


@dataclass(frozen=True)
class Volume:
    name: str
    secret_name: str
    optional: bool = True


@dataclass(frozen=True)
class PodTemplate:
    labels: dict[str, str]
    annotations: dict[str, str]
    containers: list[Container]
    volumes: list[Volume]
    node_selector: dict[str, str] | None = None
    tolerations: list[dict[str, Any]] | None = None
    affinity: dict[str, Any] | None = None


@dataclass(frozen=True)
class OwnerReference:
    kind: str
    name: str
    controller: bool = True
    block_owner_deletion: bool = True


@dataclass(frozen=True)
class Workload:
    name: str
    labels: dict[str, str]
    replicas: int
    selector: dict[str, str]
    strategy: str
    template: PodTemplate
    owner: OwnerReference

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def instance_name(workload_name: str, ordinal: int = 0) -> str:
    return f"{workload_name}-{ordinal}"


def template_hash(descriptor: dict[str, Any]) -> str:
    """Stable digest of a descriptor's pod template, used to detect drift of running instances."""
    canonical = json.dumps(descriptor["template"], sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


def labels_for_gateway(spec: GatewaySpec) -> dict[str, str]:
    return {
        ENABLE_SSL_VPN_LABEL: str(spec.enable_ssl_vpn).lower(),
        ENABLE_IPSEC_VPN_LABEL: str(spec.enable_ipsec_vpn).lower(),
    }


def parse_node_selector(entries: list[str]) -> dict[str, str]:
    """Turn 'key:value' entries into a node selector; malformed entries are skipped."""
    selector: dict[str, str] = {}
    for entry in entries:
        parts = entry.strip().split(":")
        if len(parts) != 2:
            continue
        selector[parts[0].strip()] = parts[1].strip()
    return selector


def _resources(spec: GatewaySpec) -> Resources:
    # requests == limits keeps the instance in the Guaranteed QoS class
    quantities = {"cpu": spec.cpu, "memory": spec.memory}
    return Resources(requests=dict(quantities), limits=dict(quantities))


def _ssl_container(spec: GatewaySpec) -> tuple[Container, list[Volume]]:
    mounts: list[VolumeMount] = []
    volumes: list[Volume] = []
    for secret, path in ((spec.ssl_secret, SSL_SECRET_PATH), (spec.dh_secret, DH_SECRET_PATH)):
        if not secret:
            continue
        mounts.append(VolumeMount(name=secret, mount_path=path))
        volumes.append(Volume(name=secret, secret_name=secret))

    container = Container(
        name=SSL_VPN_SERVER,
        image=spec.ssl_vpn_image,
        command=[SSL_VPN_STARTUP_CMD],
        ports=[ContainerPort(name=SSL_VPN_SERVER, container_port=spec.ovpn_port, protocol=spec.ovpn_proto.upper())],
        env=[
            EnvVar(OVPN_PROTO_KEY, spec.ovpn_proto),
            EnvVar(OVPN_PORT_KEY, str(spec.ovpn_port)),
            EnvVar(OVPN_CIPHER_KEY, spec.ovpn_cipher),
            EnvVar(OVPN_SUBNET_CIDR_KEY, spec.ovpn_subnet_cidr),
        ],
        volume_mounts=mounts,
        resources=_resources(spec),
    )
    return container, volumes


def _ipsec_container(spec: GatewaySpec) -> tuple[Container, list[Volume]]:
    mounts: list[VolumeMount] = []
    volumes: list[Volume] = []
    if spec.ipsec_secret:
        mounts.append(VolumeMount(name=spec.ipsec_secret, mount_path=IPSEC_VPN_SECRET_PATH))
        volumes.append(Volume(name=spec.ipsec_secret, secret_name=spec.ipsec_secret))

    container = Container(
        name=IPSEC_VPN_SERVER,
        image=spec.ipsec_vpn_image,
        command=[IPSEC_VPN_STARTUP_CMD],
        ports=[ContainerPort(name=n, container_port=p, protocol=IPSEC_PROTO) for n, p in IPSEC_PORTS],
        env=[],
        volume_mounts=mounts,
        resources=_resources(spec),
    )
    return container, volumes


def build_workload(name: str, spec: GatewaySpec, previous: dict[str, Any] | None = None) -> Workload:
    """Map a gateway spec (and the previous descriptor, if any) to the desired workload.

    Annotations written by other systems on the previous pod template are kept;
    the four controller-owned keys always win. The result depends only on the
    inputs, so regenerating it is idempotent.
    """
    annotations: dict[str, str] = {}
    if previous:
        annotations.update(previous.get("template", {}).get("annotations") or {})
    annotations.update(
        {
            LOGICAL_SWITCH_ANNOTATION: spec.subnet,
            IP_ADDRESS_ANNOTATION: spec.ip,
            INGRESS_RATE_ANNOTATION: spec.qos_bandwidth,
            EGRESS_RATE_ANNOTATION: spec.qos_bandwidth,
        }
    )

    containers: list[Container] = []
    volumes: list[Volume] = []
    if spec.enable_ssl_vpn:
        c, v = _ssl_container(spec)
        containers.append(c)
        volumes.extend(v)
    if spec.enable_ipsec_vpn:
        c, v = _ipsec_container(spec)
        containers.append(c)
        volumes.extend(v)

    node_selector = parse_node_selector(spec.selector) if spec.selector else None
    tolerations = [t.to_doc() for t in spec.tolerations] if spec.tolerations else None
    # An empty-but-present affinity block would still be asserted; leave it out.
    affinity = spec.affinity.to_doc() if spec.affinity.is_set() else None

    labels = labels_for_gateway(spec)
    template = PodTemplate(
        labels=dict(labels),
        annotations=annotations,
        containers=containers,
        volumes=volumes,
        node_selector=node_selector,
        tolerations=tolerations,
        affinity=affinity,
    )
    return Workload(
        name=name,
        labels=dict(labels),
        replicas=spec.replicas,
        selector=dict(labels),
        strategy=ROLLING_UPDATE,
        template=template,
        owner=OwnerReference(kind=OWNER_KIND, name=name),
    )
