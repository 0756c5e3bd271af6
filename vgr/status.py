from __future__ import annotations

import copy
import json
from typing import Any

from .api_models import GatewaySpec, GatewayStatus

# Scalar fields mirrored one-to-one from spec to status.
_MIRRORED = (
    "cpu",
    "memory",
    "qos_bandwidth",
    "ip",
    "replicas",
    "enable_ssl_vpn",
    "ovpn_cipher",
    "ovpn_proto",
    "ovpn_port",
    "ovpn_subnet_cidr",
    "ssl_vpn_image",
    "enable_ipsec_vpn",
    "ipsec_vpn_image",
)


def _canonical(value: Any) -> str:
    if isinstance(value, list):
        value = [v.to_doc() if hasattr(v, "to_doc") else v for v in value]
    elif hasattr(value, "to_doc"):
        value = value.to_doc()
    return json.dumps(value, sort_keys=True)


def reconcile_status(spec: GatewaySpec, status: GatewayStatus, connections: list[str] | None = None) -> bool:
    """Copy every spec field that differs into status; return whether anything changed.

    ``spec`` and ``status`` are mutated in place. With IPsec enabled and a
    connection list supplied, the list is materialized into both and the
    result is always "changed", so the live refresh is retried on every pass.
    """
    changed = False

    # subnet is set once and then immutable
    if not status.subnet and spec.subnet:
        status.subnet = spec.subnet
        changed = True

    for field in _MIRRORED:
        value = getattr(spec, field)
        if getattr(status, field) != value:
            setattr(status, field, value)
            changed = True

    for field in ("selector", "tolerations", "affinity"):
        value = getattr(spec, field)
        if _canonical(getattr(status, field)) != _canonical(value):
            setattr(status, field, copy.deepcopy(value))
            changed = True

    if status.enable_ipsec_vpn and connections is not None:
        if spec.ipsec_connections != connections:
            spec.ipsec_connections = list(connections)
        if status.ipsec_connections != connections:
            status.ipsec_connections = list(connections)
        changed = True

    return changed
