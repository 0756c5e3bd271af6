from __future__ import annotations

from . import db
from .admission import AUTH_MODES, IKE_VERSIONS
from .connections import VPN_GW_LABEL
from .runtime import SyncResult

KIND = "IpsecConn"


def labels_for_connection(vpn_gw: str) -> dict[str, str]:
    return {VPN_GW_LABEL: vpn_gw}


def label_patch(current: dict[str, str], desired: dict[str, str]) -> dict[str, str | None]:
    """Minimal merge patch taking ``current`` labels to include ``desired``."""
    return {k: v for k, v in desired.items() if current.get(k) != v}


class ConnectionLabeler:
    """Keeps the discovery label of each connection pointing at its gateway."""

    def reconcile(self, name: str) -> SyncResult:
        try:
            conn = db.get_connection(name)
        except db.StoreError as e:
            return SyncResult.retry(f"failed to get ipsec connection: {e}")
        if conn is None:
            # deleted; the owning gateway re-aggregates on its own
            return SyncResult.ok()

        if not conn.spec.vpn_gw:
            db.log_event("ERROR", "ipsecConn vpn gw is required", kind=KIND, name=name)
            return SyncResult.fail("ipsecConn vpn gw is required")

        if conn.spec.ike_version not in IKE_VERSIONS:
            db.log_event("WARN", f"ike version is invalid: {conn.spec.ike_version!r}", kind=KIND, name=name)
        if conn.spec.auth not in AUTH_MODES:
            db.log_event("WARN", f"auth is invalid: {conn.spec.auth!r}", kind=KIND, name=name)

        patch = label_patch(conn.labels, labels_for_connection(conn.spec.vpn_gw))
        if not patch:
            return SyncResult.ok()
        try:
            db.patch_connection_labels(name, patch, resource_version=conn.resource_version)
        except db.StoreError as e:
            db.log_event("ERROR", f"failed to patch ipsec connection labels: {e}", kind=KIND, name=name)
            return SyncResult.retry(str(e))
        db.log_event("INFO", f"labeled {VPN_GW_LABEL}={conn.spec.vpn_gw}", kind=KIND, name=name)
        return SyncResult.ok()
