from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    """Resource documents use camelCase on the wire and snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_doc(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Toleration(_Model):
    key: str = ""
    operator: str = ""
    value: str = ""
    effect: str = ""
    toleration_seconds: int | None = None


class Affinity(_Model):
    # Kept as opaque documents; the workload passes them through verbatim.
    node_affinity: dict | None = None
    pod_affinity: dict | None = None
    pod_anti_affinity: dict | None = None

    def is_set(self) -> bool:
        return any(x is not None for x in (self.node_affinity, self.pod_affinity, self.pod_anti_affinity))


class GatewaySpec(_Model):
    subnet: str = Field("", description="Logical switch the instance is attached to")
    ip: str = Field("", description="Fixed instance IP; empty means allocate")
    replicas: int = Field(1, description="Must be 1; HA is not supported")
    cpu: str = "1"
    memory: str = "1024Mi"
    qos_bandwidth: str = ""

    enable_ssl_vpn: bool = False
    ovpn_cipher: str = ""
    ovpn_proto: str = ""
    ovpn_port: int = 0
    ovpn_subnet_cidr: str = ""
    ssl_vpn_image: str = ""
    ssl_secret: str = ""
    dh_secret: str = ""

    enable_ipsec_vpn: bool = False
    ipsec_vpn_image: str = ""
    ipsec_secret: str = ""

    selector: list[str] = Field(default_factory=list, description="Node selector entries, 'key:value'")
    tolerations: list[Toleration] = Field(default_factory=list)
    affinity: Affinity = Field(default_factory=Affinity)

    # Materialized by the controller from the aggregated connections.
    ipsec_connections: list[str] = Field(default_factory=list)


class GatewayStatus(_Model):
    subnet: str = ""
    ip: str = ""
    replicas: int = 0
    cpu: str = ""
    memory: str = ""
    qos_bandwidth: str = ""

    enable_ssl_vpn: bool = False
    ovpn_cipher: str = ""
    ovpn_proto: str = ""
    ovpn_port: int = 0
    ovpn_subnet_cidr: str = ""
    ssl_vpn_image: str = ""

    enable_ipsec_vpn: bool = False
    ipsec_vpn_image: str = ""

    selector: list[str] = Field(default_factory=list)
    tolerations: list[Toleration] = Field(default_factory=list)
    affinity: Affinity = Field(default_factory=Affinity)
    ipsec_connections: list[str] = Field(default_factory=list)


class ConnectionSpec(_Model):
    vpn_gw: str = ""
    auth: str = ""
    ike_version: str = ""
    proposals: str = ""
    local_cn: str = ""
    local_public_ip: str = ""
    local_private_cidrs: str = ""
    remote_cn: str = ""
    remote_public_ip: str = ""
    remote_private_cidrs: str = ""


class ApplyGatewayRequest(_Model):
    spec: GatewaySpec


class ApplyConnectionRequest(_Model):
    spec: ConnectionSpec
