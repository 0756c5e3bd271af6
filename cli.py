from __future__ import annotations

import argparse
import json
import os
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _load_spec(path: str) -> dict:
    """Read a resource file; either the bare spec or a document with a 'spec' key."""
    with open(path, encoding="utf-8") as f:
        doc = json.load(f)
    return doc if "spec" in doc else {"spec": doc}


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="VPN Gateway Reconciler CLI")
    p.add_argument("--api", default=os.getenv("VGR_API", "http://localhost:8000"), help="API base URL")
    p.add_argument("--user", default=os.getenv("VGR_API_USER", "admin"))
    p.add_argument("--password", default=os.getenv("VGR_API_PASSWORD", "change-me"))
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("gateways", help="List vpn gateways")

    s_gw = sub.add_parser("get-gateway", help="Show one vpn gateway")
    s_gw.add_argument("name")

    s_agw = sub.add_parser("apply-gateway", help="Create or update a vpn gateway from a JSON file")
    s_agw.add_argument("name")
    s_agw.add_argument("file")

    s_conns = sub.add_parser("connections", help="List ipsec connections")
    s_conns.add_argument("--vpn-gw", help="Only connections of this gateway")

    s_aconn = sub.add_parser("apply-connection", help="Create or update an ipsec connection from a JSON file")
    s_aconn.add_argument("name")
    s_aconn.add_argument("file")

    s_del = sub.add_parser("delete", help="Delete a resource")
    s_del.add_argument("kind", choices=["gateway", "connection"])
    s_del.add_argument("name")

    s_wl = sub.add_parser("workload", help="Show the workload descriptor of a gateway")
    s_wl.add_argument("name")

    s_rec = sub.add_parser("reconcile", help="Queue a gateway for reconciliation")
    s_rec.add_argument("name")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--name", help="Only events about this resource")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    auth = (args.user, args.password)

    if args.cmd == "gateways":
        r = requests.get(f"{base}/gateways", auth=auth, timeout=10)
    elif args.cmd == "get-gateway":
        r = requests.get(f"{base}/gateways/{args.name}", auth=auth, timeout=10)
    elif args.cmd == "apply-gateway":
        r = requests.put(f"{base}/gateways/{args.name}", json=_load_spec(args.file), auth=auth, timeout=30)
    elif args.cmd == "connections":
        params = {"vpn_gw": args.vpn_gw} if args.vpn_gw else None
        r = requests.get(f"{base}/connections", params=params, auth=auth, timeout=10)
    elif args.cmd == "apply-connection":
        r = requests.put(f"{base}/connections/{args.name}", json=_load_spec(args.file), auth=auth, timeout=30)
    elif args.cmd == "delete":
        path = "gateways" if args.kind == "gateway" else "connections"
        r = requests.delete(f"{base}/{path}/{args.name}", auth=auth, timeout=30)
    elif args.cmd == "workload":
        r = requests.get(f"{base}/gateways/{args.name}/workload", auth=auth, timeout=10)
    elif args.cmd == "reconcile":
        r = requests.post(f"{base}/gateways/{args.name}/reconcile", auth=auth, timeout=10)
    elif args.cmd == "events":
        params = {"limit": args.limit}
        if args.name:
            params["name"] = args.name
        r = requests.get(f"{base}/events", params=params, auth=auth, timeout=10)
    else:
        return 2

    _print(r.json())
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
