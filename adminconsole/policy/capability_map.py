# adminconsole/policy/capability_map.py
"""
Capability route map with hot-reload.

    routes:
      - path: "/api/v1/projects/*/members/*"
        method: PUT
        capability: manage_users

Mutating requests whose path matches a route must hold the route's
capability. Reads (GET/HEAD/OPTIONS) and unmatched routes pass through.
"""
from __future__ import annotations

import fnmatch
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from adminconsole.config.settings import Settings
from adminconsole.metrics.registry import METRICS

from .capability import Capability, parse_capability
from .pep import check, forbidden_detail

log = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class CapabilityRoute:
    path: str
    method: str
    capability: Capability


def _file_etag(path: str) -> str:
    """Content hash of the map file, "" while the file is absent."""
    p = Path(path)
    if not p.is_file():
        return ""
    return hashlib.sha256(p.read_bytes()).hexdigest()


def _load_map(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}


def parse_routes(raw: Dict[str, Any]) -> List[CapabilityRoute]:
    """Validate map entries; unknown capability names raise ValueError."""
    routes: List[CapabilityRoute] = []
    for idx, entry in enumerate(raw.get("routes") or []):
        if not isinstance(entry, dict) or not entry.get("path"):
            raise ValueError(f"invalid_capability_route:{idx}")
        routes.append(
            CapabilityRoute(
                path=str(entry["path"]),
                method=str(entry.get("method") or "*").upper(),
                capability=parse_capability(str(entry.get("capability", ""))),
            )
        )
    return routes


def route_match(routes: List[CapabilityRoute], path: str, method: str) -> Optional[CapabilityRoute]:
    """Longest matching path pattern wins."""
    method = method.upper()
    best: Optional[CapabilityRoute] = None
    for r in routes:
        if fnmatch.fnmatch(path, r.path) and r.method in ("*", method):
            if best is None or len(r.path) > len(best.path):
                best = r
    return best


class CapabilityMapState:
    """Hot-reloadable route map state."""

    def __init__(self, map_path: str, reload_sec: int):
        self.map_path = map_path
        self.reload_sec = max(1, reload_sec)
        self.routes: List[CapabilityRoute] = []
        self.sha = ""
        self._next_check_ts = 0.0
        self._lock = threading.Lock()
        with self._lock:
            self._force_reload_unlocked()

    def _force_reload_unlocked(self) -> None:
        self.routes = parse_routes(_load_map(self.map_path))
        self.sha = _file_etag(self.map_path)
        self._next_check_ts = time.time() + self.reload_sec
        METRICS.inc("adminconsole_capability_map_reload_total", {"event": "initial"})
        log.info("capability_map_reload", extra={"map_path": self.map_path, "etag": self.sha, "routes": len(self.routes)})

    def ensure_fresh(self) -> None:
        now = time.time()
        if now < self._next_check_ts:
            return
        with self._lock:
            if now < self._next_check_ts:
                return
            current = _file_etag(self.map_path)
            if current and current != self.sha:
                self.routes = parse_routes(_load_map(self.map_path))
                self.sha = current
                METRICS.inc("adminconsole_capability_map_reload_total", {"event": "reload"})
                log.info("capability_map_reload", extra={"map_path": self.map_path, "etag": current, "routes": len(self.routes)})
            self._next_check_ts = time.time() + self.reload_sec


class CapabilityMapMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, map_path: Optional[str] = None, reload_sec: Optional[int] = None):
        super().__init__(app)
        cfg = Settings()
        self.bypass = cfg.get_bypass_prefixes()
        self.state = CapabilityMapState(
            map_path or cfg.CAPABILITY_MAP_PATH,
            reload_sec or cfg.CAPABILITY_RELOAD_SEC,
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.bypass):
            return await call_next(request)

        if request.method.upper() not in SAFE_METHODS:
            self.state.ensure_fresh()
            matched = route_match(self.state.routes, path, request.method)
            if matched is not None:
                decision = check(request, matched.capability)
                request.state.capability_decision = decision
                if not decision.allow:
                    return Response(
                        json.dumps(forbidden_detail(decision)),
                        403,
                        media_type="application/json",
                    )

        resp: Response = await call_next(request)
        resp.headers["X-Capability-Map-ETag"] = self.state.sha or "missing"
        return resp


__all__ = [
    "CapabilityMapMiddleware",
    "CapabilityMapState",
    "CapabilityRoute",
    "parse_routes",
    "route_match",
]
