from __future__ import annotations

import re

from . import db
from .api_models import GatewaySpec, GatewayStatus

SSL_VPN_PORTS = {443, 1149}
SSL_VPN_PROTOS = {"udp", "tcp"}

# secret names become directories under the secrets dir
_SECRET_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$")
_CPU_RE = re.compile(r"^(\d+(?:\.\d+)?)(m?)$")
_MEMORY_RE = re.compile(r"^(\d+(?:\.\d+)?)(Ki|Mi|Gi|Ti|K|M|G|T)?$")
_MEMORY_UNITS = {
    None: 1,
    "K": 10**3,
    "M": 10**6,
    "G": 10**9,
    "T": 10**12,
    "Ki": 2**10,
    "Mi": 2**20,
    "Gi": 2**30,
    "Ti": 2**40,
}


class InvalidGatewaySpec(ValueError):
    """The gateway spec can never converge as written; retrying will not help."""


def parse_cpu(quantity: str) -> float:
    """'500m' -> 0.5, '2' -> 2.0"""
    m = _CPU_RE.match(quantity.strip())
    if not m:
        raise ValueError(f"invalid cpu quantity {quantity!r}")
    value = float(m.group(1))
    return value / 1000.0 if m.group(2) else value


def parse_memory(quantity: str) -> int:
    """'256Mi' -> bytes"""
    m = _MEMORY_RE.match(quantity.strip())
    if not m:
        raise ValueError(f"invalid memory quantity {quantity!r}")
    return int(float(m.group(1)) * _MEMORY_UNITS[m.group(2)])


def validate_gateway(spec: GatewaySpec, status: GatewayStatus | None, name: str = "") -> None:
    """Raise InvalidGatewaySpec if the gateway spec is structurally invalid."""
    if not spec.subnet:
        raise InvalidGatewaySpec("vpn gw subnet is required")
    if status is not None and status.subnet and spec.subnet != status.subnet:
        raise InvalidGatewaySpec(f"vpn gw subnet can not be changed from {status.subnet!r} to {spec.subnet!r}")

    if not spec.ip:
        db.log_event("INFO", "vpn gw pod ip random allocate", kind="VpnGw", name=name)
    else:
        db.log_event("INFO", f"vpn gw pod ip set by user: {spec.ip}", kind="VpnGw", name=name)

    if spec.replicas != 1:
        raise InvalidGatewaySpec("vpn gw replicas should only be 1 for now, ha mode is not supported")

    try:
        parse_cpu(spec.cpu)
        parse_memory(spec.memory)
    except ValueError as e:
        raise InvalidGatewaySpec(str(e)) from e

    for field, secret in (
        ("sslSecret", spec.ssl_secret),
        ("dhSecret", spec.dh_secret),
        ("ipsecSecret", spec.ipsec_secret),
    ):
        if secret and not _SECRET_NAME_RE.match(secret):
            raise InvalidGatewaySpec(f"{field} {secret!r} is not a valid secret name")

    if spec.enable_ssl_vpn:
        if not spec.ovpn_cipher:
            raise InvalidGatewaySpec("ssl vpn cipher is required")
        if not spec.ovpn_proto:
            raise InvalidGatewaySpec("ssl vpn proto is required")
        if spec.ovpn_port not in SSL_VPN_PORTS:
            raise InvalidGatewaySpec("ssl vpn port is required, udp 1149 or tcp 443")
        if not spec.ovpn_subnet_cidr:
            raise InvalidGatewaySpec("ssl vpn subnet cidr is required")
        if spec.ovpn_proto not in SSL_VPN_PROTOS:
            raise InvalidGatewaySpec(f"ssl vpn proto should be udp or tcp, got {spec.ovpn_proto!r}")
        if not spec.ssl_vpn_image:
            raise InvalidGatewaySpec("ssl vpn image is required")

    if spec.enable_ipsec_vpn and not spec.ipsec_vpn_image:
        raise InvalidGatewaySpec("ipsec vpn image is required")
