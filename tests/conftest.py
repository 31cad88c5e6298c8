import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse

import pytest

MO_PREFIX = "/api/mo/"


def empty_tree():
    return {"totalCount": "0", "imdata": []}


def error_tree(code, text="error"):
    return {"totalCount": "1", "imdata": [{"error": {"attributes": {"code": str(code), "text": text}}}]}


def mo_tree(class_name, attrs):
    return {"totalCount": "1", "imdata": [{class_name: {"attributes": dict(attrs)}}]}


def dn_from_path(path):
    assert path.startswith(MO_PREFIX) and path.endswith(".json"), path
    return path[len(MO_PREFIX):-len(".json")]


class InMemoryApic:
    """
    Minimal APIC model: POST merges attributes (status=deleted removes),
    GET returns the object or an empty imdata, DELETE removes.

    `script` is consumed first: each item is either an exception to raise or
    a tree to return instead of the modelled answer.
    `server_values` forces the value the APIC reports for an attribute.
    """

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.script = []
        self.server_values = {}
        self.closed = 0
        self._lock = threading.Lock()

    def call(self, method, path, payload=None):
        with self._lock:
            self.calls.append((method, path, payload))
            if self.script:
                item = self.script.pop(0)
                if isinstance(item, Exception):
                    raise item
                return item
            dn = dn_from_path(path)
            if method == "GET":
                if dn not in self.objects:
                    return empty_tree()
                cls, attrs = self.objects[dn]
                return mo_tree(cls, attrs)
            if method == "DELETE":
                self.objects.pop(dn, None)
                return empty_tree()
            cls = next(iter(payload))
            attrs = dict(payload[cls]["attributes"])
            status = attrs.pop("status", "")
            if status == "deleted":
                if dn not in self.objects:
                    return error_tree(107, "cannot delete, object does not exist")
                del self.objects[dn]
                return empty_tree()
            _, current = self.objects.setdefault(dn, (cls, {"dn": dn}))
            current.update(attrs)
            current.update(self.server_values)
            return empty_tree()

    def delete_by_dn(self, dn, class_name):
        payload = {class_name: {"attributes": {"dn": dn, "status": "deleted"}}}
        return self.call("POST", MO_PREFIX + dn + ".json", payload)

    def close(self):
        self.closed += 1

    def methods(self):
        return [c[0] for c in self.calls]


@pytest.fixture()
def apic():
    return InMemoryApic()


class FakeApicHandler(BaseHTTPRequestHandler):
    """HTTP front for an InMemoryApic plus aaaLogin; `state` is reset per test."""

    state = None
    protocol_version = "HTTP/1.1"

    def _send_json(self, status, obj):
        raw = (obj if isinstance(obj, str) else json.dumps(obj)).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _body(self):
        length = int(self.headers.get("Content-Length", "0"))
        raw = self.rfile.read(length) if length else b""
        return json.loads(raw.decode("utf-8")) if raw else None

    def _authorized(self):
        st = FakeApicHandler.state
        cookies = {c.strip() for c in self.headers.get("Cookie", "").split(";")}
        with st["lock"]:
            return any(f"APIC-cookie={tok}" in cookies for tok in st["tokens"])

    def _dispatch(self, method):
        st = FakeApicHandler.state
        path = urlparse(self.path).path
        body = self._body() if method in ("POST",) else None
        st["requests"].append((method, path, body))

        if path == "/api/aaaLogin.json":
            with st["lock"]:
                st["logins"] += 1
                token = f"tok{st['logins']}"
            attrs = (body or {}).get("aaaUser", {}).get("attributes", {})
            if attrs.get("name") != "admin" or attrs.get("pwd") != "secret":
                self._send_json(401, error_tree(401, "Username or password is incorrect"))
                return
            with st["lock"]:
                st["tokens"].add(token)
            self._send_json(200, {"imdata": [{"aaaLogin": {"attributes": {"token": token}}}]})
            return

        if not self._authorized():
            self._send_json(403, error_tree(403, "Token was invalid (Error: Token timeout)"))
            return

        if st["raw"]:
            status, obj = st["raw"].pop(0)
            self._send_json(status, obj)
            return

        if not path.startswith(MO_PREFIX):
            self._send_json(404, "<html>not found</html>")
            return
        tree = st["apic"].call(method, path, body)
        code = 400 if tree["imdata"] and "error" in tree["imdata"][0] else 200
        self._send_json(code, tree)

    def do_GET(self):  # noqa: N802
        self._dispatch("GET")

    def do_POST(self):  # noqa: N802
        self._dispatch("POST")

    def do_DELETE(self):  # noqa: N802
        self._dispatch("DELETE")

    def log_message(self, fmt, *args):  # silence server logs during tests
        return


@pytest.fixture()
def apic_server():
    FakeApicHandler.state = {
        "apic": InMemoryApic(),
        "requests": [],
        "logins": 0,
        "tokens": set(),
        "lock": threading.Lock(),
        "raw": [],
    }
    server = ThreadingHTTPServer(("127.0.0.1", 0), FakeApicHandler)
    host, port = server.server_address
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://{host}:{port}", FakeApicHandler.state
    server.shutdown()
    thread.join(timeout=1.0)
