"""Scripted stand-in for requests.Session plus LibreLinkUp payload builders."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

NOW = 1_700_000_000


@dataclass
class Call:
    method: str
    url: str
    headers: dict[str, str]
    body: Optional[dict] = None


class FakeResponse:
    def __init__(self, body: Any = None, status_code: int = 200, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(body)

    def json(self) -> Any:
        return json.loads(self.text)


@dataclass
class FakeHttp:
    """Matches requests by method and URL suffix; the last queued response repeats."""

    routes: dict[tuple[str, str], list[Any]] = field(default_factory=dict)
    calls: list[Call] = field(default_factory=list)
    delay: float = 0.0

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def add(self, method: str, path: str, *responses: Any) -> "FakeHttp":
        self.routes.setdefault((method, path), []).extend(responses)
        return self

    def request(self, method, url, headers=None, json=None, timeout=None):
        with self._lock:
            self.calls.append(Call(method, url, dict(headers or {}), json))
            queue = None
            for (route_method, path), responses in self.routes.items():
                if route_method == method and url.endswith(path):
                    queue = responses
                    break
            if not queue:
                raise AssertionError(f"unexpected request {method} {url}")
            response = queue.pop(0) if len(queue) > 1 else queue[0]

        if self.delay and url.endswith("/llu/auth/login"):
            time.sleep(self.delay)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, FakeResponse):
            return response
        return FakeResponse(response)

    def calls_to(self, path: str) -> list[Call]:
        return [c for c in self.calls if c.url.endswith(path)]


# ── Payloads ────────────────────────────────────────────────────────

def login_ok(token: str = "tok-1", expires: int = NOW + 3600, user_id: str = "user-1") -> dict:
    return {
        "status": 0,
        "data": {
            "user": {"id": user_id, "country": "DE"},
            "authTicket": {"token": token, "expires": expires, "duration": 3600000},
        },
    }


def login_redirect(region: str = "us") -> dict:
    return {"status": 0, "data": {"redirect": True, "region": region}}


def consent_required(step: Optional[str] = "tou", token: str = "temp-tok") -> dict:
    data: dict[str, Any] = {
        "user": {"id": "user-1"},
        "authTicket": {"token": token, "expires": NOW + 600, "duration": 600000},
    }
    if step:
        data["step"] = {"type": step, "componentName": "AcceptDocument"}
    return {"status": 4, "data": data}


def connections_ok(patient_id: str = "patient-1") -> dict:
    return {"status": 0, "data": [{"patientId": patient_id, "firstName": "Sam", "lastName": "Lee"}]}


def graph_ok() -> dict:
    return {
        "status": 0,
        "data": {
            "connection": {
                "patientId": "patient-1",
                "glucoseMeasurement": {
                    "ValueInMgPerDl": 112,
                    "Value": 112,
                    "GlucoseUnits": 1,
                    "TrendArrow": 3,
                    "Timestamp": "1/15/2024 10:15:00 AM",
                },
            },
            "graphData": [
                {"ValueInMgPerDl": 104, "Value": 104, "Timestamp": "1/15/2024 10:05:00 AM"},
                {"ValueInMgPerDl": 98, "Value": 98, "Timestamp": "1/15/2024 9:55:00 AM"},
            ],
        },
    }


def scripted_http() -> FakeHttp:
    """Happy-path responses for login, connections and graph."""
    return (
        FakeHttp()
        .add("POST", "/llu/auth/login", login_ok())
        .add("GET", "/llu/connections", connections_ok())
        .add("GET", "/graph", graph_ok())
    )
