import json

import cli


class FakeResponse:
    def __init__(self, payload, ok=True):
        self.payload = payload
        self.ok = ok

    def json(self):
        return self.payload


def test_apply_gateway_wraps_bare_spec(tmp_path, monkeypatch, capsys):
    calls = []

    def fake_put(url, json=None, auth=None, timeout=None):
        calls.append((url, json, auth))
        return FakeResponse({"name": "gw1"})

    monkeypatch.setattr(cli.requests, "put", fake_put)
    f = tmp_path / "gw1.json"
    f.write_text(json.dumps({"subnet": "vpn-subnet"}), encoding="utf-8")

    rc = cli.main(["--api", "http://api/", "--user", "u", "--password", "p", "apply-gateway", "gw1", str(f)])
    assert rc == 0
    assert calls == [("http://api/gateways/gw1", {"spec": {"subnet": "vpn-subnet"}}, ("u", "p"))]
    assert '"name": "gw1"' in capsys.readouterr().out


def test_error_response_sets_exit_code(monkeypatch):
    seen = {}

    def fake_get(url, params=None, auth=None, timeout=None):
        seen["url"], seen["params"] = url, params
        return FakeResponse({"detail": "Invalid credentials"}, ok=False)

    monkeypatch.setattr(cli.requests, "get", fake_get)
    assert cli.main(["--api", "http://api", "connections", "--vpn-gw", "gw1"]) == 1
    assert seen == {"url": "http://api/connections", "params": {"vpn_gw": "gw1"}}
