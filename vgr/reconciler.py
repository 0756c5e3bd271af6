from __future__ import annotations

import time
from typing import Callable

from docker.errors import DockerException

from . import db, docker_ops
from .connections import aggregate_connections
from .db import GatewayRow
from .pusher import LiveConfigPusher, RetryableError
from .runtime import SyncResult
from .settings import Settings, settings
from .status import reconcile_status
from .validation import InvalidGatewaySpec, validate_gateway
from .workload import build_workload

KIND = "VpnGw"


class GatewayReconciler:
    """Converges one gateway: validate, workload, live connection refresh, status."""

    def __init__(
        self,
        runtime=docker_ops,
        sleep: Callable[[float], None] = time.sleep,
        config: Settings = settings,
        pusher: LiveConfigPusher | None = None,
    ):
        self.runtime = runtime
        self.sleep = sleep
        self.config = config
        self.pusher = pusher or LiveConfigPusher(runtime=runtime, sleep=sleep, config=config)

    def reconcile(self, name: str) -> SyncResult:
        try:
            gw = db.get_gateway(name)
        except db.StoreError as e:
            return SyncResult.retry(f"failed to get vpn gw: {e}")
        if gw is None:
            return self._cleanup(name)

        try:
            validate_gateway(gw.spec, gw.status, name)
        except InvalidGatewaySpec as e:
            db.log_event("ERROR", f"invalid vpn gw spec: {e}", kind=KIND, name=name)
            return SyncResult.fail(str(e))

        try:
            return self._handle_add_or_update(gw)
        except db.StoreError as e:
            db.log_event("ERROR", f"store error: {e}", kind=KIND, name=name)
            return SyncResult.retry(str(e))
        except (DockerException, RuntimeError) as e:
            db.log_event("ERROR", f"runtime error: {type(e).__name__}: {e}", kind=KIND, name=name)
            return SyncResult.retry(str(e))
        except RetryableError as e:
            return SyncResult.retry(str(e))

    def _cleanup(self, name: str) -> SyncResult:
        """The gateway is gone: remove what it owned."""
        try:
            deleted = db.delete_workload(name)
            removed = self.runtime.remove_workload(name)
        except db.StoreError as e:
            return SyncResult.retry(f"failed to delete workload: {e}")
        except (DockerException, RuntimeError) as e:
            return SyncResult.retry(f"failed to remove workload containers: {e}")
        if deleted or removed:
            db.log_event("INFO", f"Deleted workload ({removed} containers)", kind=KIND, name=name)
        return SyncResult.ok()

    def _handle_add_or_update(self, gw: GatewayRow) -> SyncResult:
        # gw.spec/gw.status are the single accumulator for this pass; the final
        # status write sees everything earlier steps recorded.
        name = gw.name
        changed = False

        old = db.get_workload(name)
        if old is None:
            desired = build_workload(name, gw.spec, None).to_dict()
            db.create_workload(name, owner=name, descriptor=desired)
            self.runtime.apply_workload(desired)
            db.log_event("INFO", "Created workload", kind=KIND, name=name)
            self.sleep(self.config.settle_s)
        elif reconcile_status(gw.spec, gw.status):
            changed = True
            desired = build_workload(name, gw.spec, old.descriptor).to_dict()
            db.update_workload(name, desired)
            self.runtime.apply_workload(desired)
            db.log_event("INFO", "Updated workload", kind=KIND, name=name)
            self.sleep(self.config.settle_s)
        else:
            # no spec change; still replace containers that died or drifted
            self.runtime.apply_workload(old.descriptor)

        connections: list[str] | None = None
        if gw.spec.enable_ipsec_vpn:
            aggregated = aggregate_connections(name)
            connections = []
            if aggregated.serialized:
                connections = self.pusher.push(name, gw.spec, aggregated)
                db.log_event("INFO", f"Refreshed {len(connections)} ipsec connections", kind=KIND, name=name)

        if reconcile_status(gw.spec, gw.status, connections) or changed:
            db.update_gateway_status(name, gw.status, gw.spec.ipsec_connections)
        return SyncResult.ok()
