"""
ApicClient: JSON-over-HTTPS transport for the APIC REST API.

- One requests.Session per client (not shared between workers).
- Password login via /api/aaaLogin.json; the token rides in the APIC-cookie.
- Lazy login before the first call; a 403 triggers one re-login and replay.
- Any JSON body holding "imdata" is returned as-is, whatever the HTTP status:
  the APIC reports rejections inside the tree and the interpreter reads them.
- Everything else that goes wrong raises TransportError. No retries here.

Usage:
    client = ApicClient("https://apic.local", "admin", "secret", verify_tls=False)
    tree = client.call("GET", "/api/mo/uni/tn-demo.json")
"""

from __future__ import annotations

import json
import logging
import os
import time
import warnings
from typing import Any, Dict, Optional, Tuple

import requests
import urllib3

from .errors import TransportError
from .models import mo_path
from .payload import LifecycleState, build_payload
from .tree import Tree, search

LOGIN_PATH = "/api/aaaLogin.json"
COOKIE_NAME = "APIC-cookie"

_LOG_PREVIEW = int(os.getenv("APICSYNC_HTTP_PREVIEW", "600"))
_REDACT_KEYS = {"pwd", "password", "token", "authorization", COOKIE_NAME.lower()}


def _short_json(obj: Any, limit: int = _LOG_PREVIEW) -> str:
    try:
        if isinstance(obj, (dict, list)):
            s = json.dumps(obj, ensure_ascii=False)
        else:
            s = str(obj)
        return s[:limit]
    except (TypeError, ValueError):
        return f"<unserializable:{type(obj).__name__}>"


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: ("***REDACTED***" if str(k).lower() in _REDACT_KEYS else _redact(v)) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_redact(x) for x in obj]
    return obj


class ApicClient:
    """Authenticated APIC transport; see module docstring."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        verify_tls: bool = True,
        timeout_sec: float = 30,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.verify_tls = bool(verify_tls)
        self.timeout = float(timeout_sec)
        self.log = logger or logging.getLogger("apicsync.http")
        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "apicsync/HTTPClient",
        })
        self._token: Optional[str] = None

        if not self.verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    # ------------- Public API -------------

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def login(self) -> None:
        payload = {"aaaUser": {"attributes": {"name": self.username, "pwd": self.password}}}
        tree, status = self._send(self.make_request("POST", LOGIN_PATH, payload))
        tokens = search(tree, "imdata", "aaaLogin", "attributes", "token") or []
        if not tokens or not isinstance(tokens[0], str) or not tokens[0]:
            texts = search(tree, "imdata", "error", "attributes", "text") or []
            reason = texts[0] if texts else "no token in response"
            raise TransportError(f"login failed: {reason}", status=status, url=self._url(LOGIN_PATH))
        self._token = tokens[0]
        self.session.cookies.set(COOKIE_NAME, self._token)
        self.log.debug("Logged in to %s as %s", self.base_url, self.username)

    def make_request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> requests.PreparedRequest:
        req = requests.Request(method.upper(), self._url(path), json=payload)
        return self.session.prepare_request(req)

    def execute(self, request: requests.PreparedRequest) -> Tree:
        tree, _ = self._send(request)
        return tree

    def call(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Tree:
        """One authenticated round trip; returns the response tree."""
        if not self.authenticated:
            self.login()
        if payload is not None:
            self.log.debug("%s %s payload=%s", method, path, _short_json(_redact(payload)))
        tree, status = self._send(self.make_request(method, path, payload))
        if status == 403:
            self.log.info("%s %s -> 403, refreshing session and replaying once", method, path)
            self.login()
            tree, status = self._send(self.make_request(method, path, payload))
        return tree

    def delete_by_dn(self, dn: str, class_name: str) -> Tree:
        """
        Delete through a status=deleted POST that carries the dn in its attributes.

        Unlike a bare status=deleted body, the APIC resolves the target from the
        payload dn rather than only from the URL path. The reply is returned for
        interpretation.
        """
        payload = build_payload(class_name, {"dn": dn}, LifecycleState.DELETED)
        return self.call("POST", mo_path(dn), payload)

    def close(self) -> None:
        self.session.close()

    # ------------- Internal -------------

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, request: requests.PreparedRequest) -> Tuple[Tree, int]:
        start = time.time()
        try:
            resp = self.session.send(request, timeout=self.timeout, verify=self.verify_tls)
        except requests.RequestException as exc:
            self.log.warning("%s %s failed: %s", request.method, request.url, exc)
            raise TransportError(str(exc), url=request.url or "") from exc

        status = resp.status_code
        elapsed = (time.time() - start) * 1000
        self.log.debug("%s %s -> %s in %.1fms", request.method, request.url, status, elapsed)

        text = resp.text or ""
        try:
            tree = resp.json() if text.strip() else {}
        except ValueError:
            tree = None

        if isinstance(tree, dict) and "imdata" in tree:
            return tree, status
        if status >= 400:
            self.log.warning("%s %s -> %s: %s", request.method, request.url, status, text[:200])
            raise TransportError(f"HTTP {status}", status=status, url=request.url or "", body=text)
        if tree is None:
            raise TransportError("non-JSON response", status=status, url=request.url or "", body=text)
        if not isinstance(tree, dict):
            raise TransportError("unexpected JSON document", status=status, url=request.url or "", body=text)
        return tree, status
