from __future__ import annotations

import shlex
import time
from typing import Callable

from docker.errors import DockerException

from . import db, docker_ops
from .api_models import GatewaySpec
from .connections import AggregatedConnections
from .docker_ops import ExecResult
from .settings import Settings, settings
from .workload import IPSEC_VPN_SERVER

IPSEC_CONNECTION_REFRESH_TEMPLATE = "/connection.sh refresh %s"


class RetryableError(Exception):
    """The gateway has not converged yet; try again later."""


def refresh_command(serialized: str) -> list[str]:
    return ["/bin/bash", "-c", IPSEC_CONNECTION_REFRESH_TEMPLATE % shlex.quote(serialized)]


def refresh_failure(result: ExecResult, mode: str) -> str | None:
    """Describe why a refresh failed, or return None if it succeeded."""
    if result.stderr:
        return f"refresh wrote to stderr: {result.stderr.strip()}"
    if result.exit_code not in (0, None):
        return f"refresh exited with code {result.exit_code}"
    if mode == "output" and result.stdout:
        return f"refresh wrote to stdout: {result.stdout.strip()}"
    return None


class LiveConfigPusher:
    """Hot-applies the aggregated connection list inside the running IPsec container."""

    def __init__(
        self,
        runtime=docker_ops,
        sleep: Callable[[float], None] = time.sleep,
        config: Settings = settings,
    ):
        self.runtime = runtime
        self.sleep = sleep
        self.config = config

    def _retry(self, name: str, message: str, wait_s: float) -> RetryableError:
        db.log_event("ERROR", message, kind="VpnGw", name=name)
        self.sleep(wait_s)
        return RetryableError(message)

    def push(self, name: str, spec: GatewaySpec, aggregated: AggregatedConnections) -> list[str]:
        """Refresh the connections of gateway ``name``; returns the names pushed."""
        if not spec.enable_ipsec_vpn:
            raise RetryableError("ipsec vpn is not enabled")
        if not aggregated.serialized:
            raise RetryableError("no ipsec connections to refresh")

        try:
            instance = self.runtime.get_instance(name)
        except (DockerException, RuntimeError) as e:
            raise self._retry(name, f"failed to get vpn gw pod: {e}", self.config.pod_missing_wait_s)
        if instance is None or IPSEC_VPN_SERVER not in instance.containers:
            raise self._retry(name, "vpn gw pod not found", self.config.pod_missing_wait_s)
        if instance.phase != docker_ops.POD_RUNNING:
            raise self._retry(
                name,
                f"vpn gw pod {instance.name} is {instance.phase}, wait a while to refresh ipsec connections",
                self.config.pod_not_running_wait_s,
            )

        argv = refresh_command(aggregated.serialized)
        db.log_event("INFO", f"refresh ipsec connections in {instance.name}: {argv[-1]}", kind="VpnGw", name=name)
        try:
            result = self.runtime.exec_in_container(instance.containers[IPSEC_VPN_SERVER], argv)
        except (DockerException, RuntimeError) as e:
            raise self._retry(name, f"failed to exec in vpn gw pod: {e}", self.config.exec_failure_wait_s)

        failure = refresh_failure(result, self.config.refresh_success_mode)
        if failure:
            raise self._retry(name, f"failed to refresh vpn gw ipsec connections: {failure}", self.config.exec_failure_wait_s)
        if result.stdout:
            db.log_event("INFO", f"refresh output: {result.stdout.strip()}", kind="VpnGw", name=name)
        return list(aggregated.names)
