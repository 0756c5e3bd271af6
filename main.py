from __future__ import annotations

import secrets
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from vgr import db
from vgr.admission import AdmissionError, admit_connection
from vgr.api_models import ApplyConnectionRequest, ApplyGatewayRequest
from vgr.connections import VPN_GW_LABEL
from vgr.controller import Controller
from vgr.settings import settings

app = FastAPI(title="VPN Gateway Reconciler")
security = HTTPBasic()

controller: Controller | None = None


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    ok_user = secrets.compare_digest(credentials.username, settings.api_user)
    ok_pass = secrets.compare_digest(credentials.password, settings.api_password)
    if not (ok_user and ok_pass):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


@app.on_event("startup")
def startup() -> None:
    global controller
    db.init_db()
    controller = Controller()
    if settings.start_controller:
        controller.start()


@app.on_event("shutdown")
def shutdown() -> None:
    if controller is not None:
        controller.stop()


def _gateway_doc(gw: db.GatewayRow) -> dict[str, Any]:
    return {
        "name": gw.name,
        "spec": gw.spec.to_doc(),
        "status": gw.status.to_doc(),
        "resourceVersion": gw.resource_version,
        "createdAt": gw.created_at,
        "updatedAt": gw.updated_at,
    }


def _connection_doc(conn: db.ConnectionRow) -> dict[str, Any]:
    return {
        "name": conn.name,
        "labels": conn.labels,
        "spec": conn.spec.to_doc(),
        "resourceVersion": conn.resource_version,
        "createdAt": conn.created_at,
        "updatedAt": conn.updated_at,
    }


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


# --- gateways ---

@app.get("/gateways")
def list_gateways(username: str = Depends(get_current_username)) -> list[dict[str, Any]]:
    return [_gateway_doc(g) for g in db.list_gateways()]


@app.get("/gateways/{name}")
def get_gateway(name: str, username: str = Depends(get_current_username)) -> dict[str, Any]:
    gw = db.get_gateway(name)
    if gw is None:
        raise HTTPException(status_code=404, detail=f"vpn gw {name} not found")
    return _gateway_doc(gw)


@app.put("/gateways/{name}")
def apply_gateway(name: str, req: ApplyGatewayRequest, username: str = Depends(get_current_username)) -> dict[str, Any]:
    gw = db.put_gateway(name, req.spec)
    db.log_event("INFO", f"{username} applied vpn gw (resourceVersion {gw.resource_version})", kind="VpnGw", name=name)
    if controller is not None:
        controller.enqueue_gateway(name)
    return _gateway_doc(gw)


@app.delete("/gateways/{name}")
def delete_gateway(name: str, username: str = Depends(get_current_username)) -> dict[str, str]:
    if not db.delete_gateway(name):
        raise HTTPException(status_code=404, detail=f"vpn gw {name} not found")
    db.log_event("INFO", f"{username} deleted vpn gw", kind="VpnGw", name=name)
    if controller is not None:
        controller.enqueue_gateway(name)
    return {"deleted": name}


@app.get("/gateways/{name}/workload")
def get_workload(name: str, username: str = Depends(get_current_username)) -> dict[str, Any]:
    wl = db.get_workload(name)
    if wl is None:
        raise HTTPException(status_code=404, detail=f"workload {name} not found")
    return {"name": wl.name, "owner": wl.owner, "resourceVersion": wl.resource_version, "descriptor": wl.descriptor}


@app.post("/gateways/{name}/reconcile", status_code=status.HTTP_202_ACCEPTED)
def trigger_reconcile(name: str, username: str = Depends(get_current_username)) -> dict[str, str]:
    if db.get_gateway(name) is None:
        raise HTTPException(status_code=404, detail=f"vpn gw {name} not found")
    if controller is not None:
        controller.enqueue_gateway(name)
    return {"queued": name}


# --- connections ---

@app.get("/connections")
def list_connections(vpn_gw: str | None = None, username: str = Depends(get_current_username)) -> list[dict[str, Any]]:
    labels = {VPN_GW_LABEL: vpn_gw} if vpn_gw else None
    return [_connection_doc(c) for c in db.list_connections(labels)]


@app.get("/connections/{name}")
def get_connection(name: str, username: str = Depends(get_current_username)) -> dict[str, Any]:
    conn = db.get_connection(name)
    if conn is None:
        raise HTTPException(status_code=404, detail=f"ipsec connection {name} not found")
    return _connection_doc(conn)


@app.put("/connections/{name}")
def apply_connection(name: str, req: ApplyConnectionRequest, username: str = Depends(get_current_username)) -> dict[str, Any]:
    old = db.get_connection(name)
    try:
        spec = admit_connection(req.spec, old.spec if old else None)
    except AdmissionError as e:
        raise HTTPException(status_code=422, detail=e.errors)
    conn = db.put_connection(name, spec)
    db.log_event("INFO", f"{username} applied ipsec connection for vpn gw {spec.vpn_gw}", kind="IpsecConn", name=name)
    if controller is not None:
        controller.enqueue_connection(name, spec.vpn_gw)
    return _connection_doc(conn)


@app.delete("/connections/{name}")
def delete_connection(name: str, username: str = Depends(get_current_username)) -> dict[str, str]:
    conn = db.delete_connection(name)
    if conn is None:
        raise HTTPException(status_code=404, detail=f"ipsec connection {name} not found")
    db.log_event("INFO", f"{username} deleted ipsec connection", kind="IpsecConn", name=name)
    if controller is not None:
        controller.enqueue_connection(name, conn.labels.get(VPN_GW_LABEL) or conn.spec.vpn_gw)
    return {"deleted": name}


@app.get("/events")
def events(limit: int = 100, name: str | None = None, username: str = Depends(get_current_username)) -> list[dict[str, Any]]:
    return db.latest_events(limit=max(1, min(1000, limit)), name=name)
