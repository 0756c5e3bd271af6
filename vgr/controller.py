from __future__ import annotations

from threading import Event, Thread

from . import db
from .labeler import ConnectionLabeler
from .reconciler import GatewayReconciler
from .runtime import ShutDown, SyncResult, SyncState, WorkQueue
from .settings import Settings, settings

GATEWAY = "VpnGw"
CONNECTION = "IpsecConn"


class Controller:
    """Feeds gateway and connection keys to their reconcilers.

    Keys come from the API on every change and from a periodic resync. The
    queue serializes work per key; results decide whether a key comes back.
    """

    def __init__(
        self,
        gateways: GatewayReconciler | None = None,
        labeler: ConnectionLabeler | None = None,
        queue: WorkQueue | None = None,
        config: Settings = settings,
    ):
        self.gateways = gateways or GatewayReconciler(config=config)
        self.labeler = labeler or ConnectionLabeler()
        self.queue = queue or WorkQueue()
        self.config = config
        self._stop = Event()
        self._threads: list[Thread] = []

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        if self.queue.closed:
            # a shut down queue never hands out keys again
            self.queue = WorkQueue(clock=self.queue.clock)
        self._stop.clear()
        self._threads = [Thread(target=self._resync_loop, daemon=True, name="vgr-resync")]
        for i in range(max(1, self.config.workers)):
            self._threads.append(Thread(target=self._worker, daemon=True, name=f"vgr-worker-{i}"))
        for t in self._threads:
            t.start()
        db.log_event("INFO", f"Controller started with {max(1, self.config.workers)} workers")

    def stop(self) -> None:
        self._stop.set()
        self.queue.shutdown()
        for t in self._threads:
            t.join(timeout=5)

    def enqueue_gateway(self, name: str) -> None:
        self.queue.add((GATEWAY, name))

    def enqueue_connection(self, name: str, vpn_gw: str | None = None) -> None:
        self.queue.add((CONNECTION, name))
        if vpn_gw:
            self.enqueue_gateway(vpn_gw)

    def resync(self) -> None:
        names = set()
        for gw in db.list_gateways():
            names.add(gw.name)
            self.enqueue_gateway(gw.name)
        # workloads whose gateway was deleted while no worker was running
        for wl in db.list_workloads():
            if wl.owner not in names:
                self.enqueue_gateway(wl.owner)
        for conn in db.list_connections():
            self.queue.add((CONNECTION, conn.name))

    def _resync_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.resync()
            except Exception as e:
                db.log_event("ERROR", f"Resync failed: {type(e).__name__}: {e}")
            self._stop.wait(max(1, self.config.resync_interval_s))

    def _worker(self) -> None:
        while not self._stop.is_set():
            try:
                self.process_next(timeout=1.0)
            except ShutDown:
                return

    def process_next(self, timeout: float | None = None) -> bool:
        """Handle one key. Returns False if none arrived before ``timeout``."""
        key = self.queue.get(timeout)
        if key is None:
            return False
        kind, name = key
        try:
            result = self._sync(kind, name)
        except Exception as e:
            result = SyncResult.retry(f"{type(e).__name__}: {e}")
        finally:
            self.queue.done(key)
        self._handle_result(key, result)
        return True

    def _sync(self, kind: str, name: str) -> SyncResult:
        if kind == GATEWAY:
            return self.gateways.reconcile(name)
        result = self.labeler.reconcile(name)
        if result.state is SyncState.SUCCESS:
            conn = db.get_connection(name)
            if conn is not None and conn.spec.vpn_gw:
                self.enqueue_gateway(conn.spec.vpn_gw)
        return result

    def _handle_result(self, key: tuple[str, str], result: SyncResult) -> None:
        kind, name = key
        if result.state is SyncState.ERROR:
            db.log_event("ERROR", f"failed to handle {kind}, retry in {self.config.retry_delay_s}s: {result.message}", kind=kind, name=name)
            self.queue.add_after(key, self.config.retry_delay_s)
        elif result.state is SyncState.ERROR_NO_RETRY:
            db.log_event("ERROR", f"failed to handle {kind}, not retrying: {result.message}", kind=kind, name=name)
