from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import docker
from docker.errors import DockerException, NotFound

from .db import log_event
from .settings import settings
from .validation import parse_cpu, parse_memory
from .workload import IP_ADDRESS_ANNOTATION, instance_name, template_hash

WORKLOAD_LABEL = "vgr.workload"
INSTANCE_LABEL = "vgr.instance"
CONTAINER_LABEL = "vgr.container"
HASH_LABEL = "vgr.template-hash"

POD_RUNNING = "Running"
POD_PENDING = "Pending"
POD_FAILED = "Failed"

_PHASES = {
    "running": POD_RUNNING,
    "created": POD_PENDING,
    "restarting": POD_PENDING,
    "paused": POD_PENDING,
    "exited": POD_FAILED,
    "dead": POD_FAILED,
}


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str


@dataclass(frozen=True)
class Instance:
    """The running realization of one workload replica (a pod)."""

    name: str
    phase: str
    containers: dict[str, str] = field(default_factory=dict)  # container name -> docker id


@dataclass(frozen=True)
class ExecResult:
    exit_code: int | None
    stdout: str
    stderr: str


def _client() -> docker.DockerClient:
    return docker.from_env()


def docker_available() -> bool:
    try:
        c = _client()
        c.ping()
        return True
    except DockerException:
        return False


def ensure_network() -> None:
    c = _client()
    try:
        c.networks.get(settings.docker_network)
    except NotFound:
        c.networks.create(settings.docker_network, driver="bridge")
        log_event("INFO", f"Created docker network '{settings.docker_network}'.")


def container_name(instance: str, container: str) -> str:
    return f"vgr-{instance}-{container}"


def _run_kwargs(c: dict[str, Any], volumes: list[dict[str, Any]], labels: dict[str, str]) -> dict[str, Any]:
    """docker run arguments for one container of a pod template; secrets are host directories."""
    secret_by_volume = {v["name"]: v["secret_name"] for v in volumes}
    binds = {}
    for m in c["volume_mounts"]:
        host = os.path.join(settings.secrets_dir, secret_by_volume.get(m["name"], m["name"]))
        binds[host] = {"bind": m["mount_path"], "mode": "ro" if m["read_only"] else "rw"}

    limits = c["resources"]["limits"]
    sec = c["security_context"]
    return {
        "command": c["command"],
        "environment": {e["name"]: e["value"] for e in c["env"]},
        "labels": labels,
        "volumes": binds,
        # published on the same host port so VPN clients outside the network can reach it
        "ports": {f"{p['container_port']}/{p['protocol'].lower()}": p["container_port"] for p in c["ports"]},
        "privileged": sec["privileged"],
        "security_opt": [] if sec["allow_privilege_escalation"] else ["no-new-privileges"],
        "nano_cpus": int(parse_cpu(limits["cpu"]) * 1e9),
        "mem_limit": parse_memory(limits["memory"]),
    }


def apply_workload(descriptor: dict[str, Any]) -> list[ContainerRef]:
    """Make the running containers match a workload descriptor.

    A container whose template hash differs from the descriptor, or which is
    no longer running, is replaced as a whole; containers the descriptor no
    longer declares are removed.
    """
    if not docker_available():
        raise RuntimeError("Docker is not available.")
    ensure_network()
    c = _client()

    workload = descriptor["name"]
    template = descriptor["template"]
    digest = template_hash(descriptor)
    fixed_ip = (template.get("annotations") or {}).get(IP_ADDRESS_ANNOTATION, "")
    refs: list[ContainerRef] = []
    wanted: set[str] = set()

    for ordinal in range(descriptor["replicas"]):
        instance = instance_name(workload, ordinal)
        for index, spec in enumerate(template["containers"]):
            name = container_name(instance, spec["name"])
            wanted.add(name)
            try:
                existing = c.containers.get(name)
                existing.reload()
                if existing.labels.get(HASH_LABEL) == digest and existing.status == "running":
                    refs.append(ContainerRef(id=existing.id, name=name))
                    continue
                existing.remove(force=True)
                log_event("INFO", f"Replacing container {name}", kind="Workload", name=workload)
            except NotFound:
                pass

            labels = dict(template["labels"])
            labels.update(
                {
                    WORKLOAD_LABEL: workload,
                    INSTANCE_LABEL: instance,
                    CONTAINER_LABEL: spec["name"],
                    HASH_LABEL: digest,
                }
            )
            kwargs = _run_kwargs(spec, template["volumes"], labels)
            if fixed_ip and index == 0:
                # one address per network; the first declared container holds the gateway IP
                kwargs["networking_config"] = {
                    settings.docker_network: c.api.create_endpoint_config(ipv4_address=fixed_ip)
                }
            container = c.containers.run(
                spec["image"],
                detach=True,
                name=name,
                network=settings.docker_network,
                # The controller replaces failed containers itself; keep Docker restarts off.
                restart_policy={"Name": "no"},
                **kwargs,
            )
            log_event("INFO", f"Started container {name} from image {spec['image']}", kind="Workload", name=workload)
            refs.append(ContainerRef(id=container.id, name=name))

    for x in c.containers.list(all=True, filters={"label": f"{WORKLOAD_LABEL}={workload}"}):
        if x.name not in wanted:
            x.remove(force=True)
            log_event("INFO", f"Removed container {x.name}", kind="Workload", name=workload)
    return refs


def remove_workload(workload: str) -> int:
    """Remove every container of a workload; returns how many were removed."""
    if not docker_available():
        return 0
    c = _client()
    removed = 0
    for x in c.containers.list(all=True, filters={"label": f"{WORKLOAD_LABEL}={workload}"}):
        try:
            x.remove(force=True)
            removed += 1
        except NotFound:
            continue
    return removed


def get_instance(workload: str, ordinal: int = 0) -> Instance | None:
    """Return the instance of a workload, or None if it has no containers."""
    if not docker_available():
        return None
    c = _client()
    name = instance_name(workload, ordinal)
    found = c.containers.list(all=True, filters={"label": f"{INSTANCE_LABEL}={name}"})
    if not found:
        return None
    phase = POD_RUNNING
    containers: dict[str, str] = {}
    for x in found:
        containers[x.labels.get(CONTAINER_LABEL, x.name)] = x.id
        p = _PHASES.get(x.status, POD_PENDING)
        if p == POD_FAILED or (p == POD_PENDING and phase == POD_RUNNING):
            phase = p
    return Instance(name=name, phase=phase, containers=containers)


def exec_in_container(container_id: str, argv: list[str]) -> ExecResult:
    """Run a command inside a container and capture both output streams."""
    c = _client()
    container = c.containers.get(container_id)
    exit_code, output = container.exec_run(argv, demux=True)
    stdout, stderr = output if output else (None, None)
    return ExecResult(
        exit_code=exit_code,
        stdout=(stdout or b"").decode(errors="replace"),
        stderr=(stderr or b"").decode(errors="replace"),
    )
