"""Admission for connection resources: defaulting, then validation.

Runs in the API before a connection is stored, so the controllers only ever
observe defaulted connections.
"""
from __future__ import annotations

from .api_models import ConnectionSpec

IKE_VERSIONS = {"0", "1", "2"}
AUTH_MODES = {"psk", "pubkey"}


class AdmissionError(ValueError):
    def __init__(self, errors: list[dict[str, str]]):
        self.errors = errors
        super().__init__("; ".join(f"{e['field']}: {e['message']}" for e in errors))


def default_connection(spec: ConnectionSpec) -> ConnectionSpec:
    updates: dict[str, str] = {}
    if not spec.auth:
        updates["auth"] = "pubkey"
    if not spec.ike_version:
        updates["ike_version"] = "2"
    if not spec.proposals:
        updates["proposals"] = "default"
    return spec.model_copy(update=updates) if updates else spec


def validate_connection(spec: ConnectionSpec, old: ConnectionSpec | None = None) -> None:
    errors: list[dict[str, str]] = []

    def invalid(field: str, message: str) -> None:
        errors.append({"field": f"spec.{field}", "message": message})

    if not spec.vpn_gw:
        invalid("vpnGw", "ipsecConn vpn gw is required")
    if spec.ike_version not in IKE_VERSIONS:
        invalid("ikeVersion", f"ike version is invalid: {spec.ike_version!r}")
    if spec.auth not in AUTH_MODES:
        invalid("auth", f"auth is invalid: {spec.auth!r}")
    if not spec.remote_public_ip:
        invalid("remotePublicIp", "remote public ip is required")
    if not spec.remote_private_cidrs:
        invalid("remotePrivateCidrs", "remote private cidrs is required")
    if not spec.local_public_ip:
        invalid("localPublicIp", "local public ip is required")
    if not spec.local_private_cidrs:
        invalid("localPrivateCidrs", "local private cidrs is required")

    if old is not None and old.vpn_gw and old.vpn_gw != spec.vpn_gw:
        invalid("vpnGw", "ipsecConn vpn gw can not be changed")

    if errors:
        raise AdmissionError(errors)


def admit_connection(spec: ConnectionSpec, old: ConnectionSpec | None = None) -> ConnectionSpec:
    spec = default_connection(spec)
    validate_connection(spec, old)
    return spec
