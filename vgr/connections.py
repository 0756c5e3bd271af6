from __future__ import annotations

from dataclasses import dataclass, field

from . import db
from .api_models import ConnectionSpec

# Discovery label: its value is the name of the owning gateway.
VPN_GW_LABEL = "vpn-gw"

_REQUIRED = (
    "auth",
    "ike_version",
    "proposals",
    "local_cn",
    "local_public_ip",
    "local_private_cidrs",
    "remote_cn",
    "remote_public_ip",
    "remote_private_cidrs",
)


@dataclass(frozen=True)
class AggregatedConnections:
    serialized: str = ""
    names: list[str] = field(default_factory=list)


def format_connection(name: str, spec: ConnectionSpec) -> str:
    """One space-separated, comma-terminated record of ten fields."""
    fields = [
        name,
        spec.auth,
        spec.ike_version,
        spec.proposals,
        spec.local_cn,
        spec.local_public_ip,
        spec.local_private_cidrs,
        spec.remote_cn,
        spec.remote_public_ip,
        spec.remote_private_cidrs,
    ]
    return " ".join(fields) + ","


def aggregate_connections(gateway_name: str) -> AggregatedConnections:
    """Collect the connections labeled for a gateway into the refresh format.

    Raises db.StoreError if the connections cannot be listed.
    """
    records: list[str] = []
    names: list[str] = []
    for conn in db.list_connections({VPN_GW_LABEL: gateway_name}):
        if not conn.spec.vpn_gw or conn.spec.vpn_gw != gateway_name:
            # labels can drift from the spec; the spec is authoritative
            db.log_event(
                "WARN",
                f"ignore ipsec connection with vpn gw {conn.spec.vpn_gw!r}, expected {gateway_name!r}",
                kind="IpsecConn",
                name=conn.name,
            )
            continue
        empty = [f for f in _REQUIRED if not getattr(conn.spec, f)]
        if empty:
            db.log_event(
                "WARN",
                f"ipsec connection has empty spec fields: {', '.join(empty)}",
                kind="IpsecConn",
                name=conn.name,
            )
        records.append(format_connection(conn.name, conn.spec))
        names.append(conn.name)
    return AggregatedConnections(serialized="".join(records), names=names)
