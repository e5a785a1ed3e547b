"""Registry client: node listing, filters, result polling."""

from __future__ import annotations

import io
import json
import random
import time
from typing import Any
from urllib import error
from urllib.request import Request

import pytest

from gb_common.errors import (
    NodeSelectionError,
    ProvisionCancelled,
    ProvisionTimeout,
    RegistryUnavailable,
)
from gb_provisioner.engine.cancel import CancelToken
from gb_provisioner.models.types import ReservationID, ReservationState
from gb_provisioner.services import registry as registry_mod
from gb_provisioner.services.registry import (
    RegistryClient,
    has_min_capacity,
    has_public_connectivity,
    is_recently_active,
    pick_public_node,
    shuffle_nodes,
)
from tests.helpers.fakes import make_node

pytestmark = [pytest.mark.unit_provisioner]

NOW = 1_700_000_000


class DummyResponse:
    def __init__(self, status: int, body: Any, headers: dict[str, str] | None = None) -> None:
        self.status = status
        self._body = body if isinstance(body, str) else json.dumps(body)
        self.headers = headers or {}

    def read(self) -> bytes:
        return self._body.encode("utf-8")

    def __enter__(self) -> "DummyResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


def _node_json(node_id: str, updated: int, sru: int = 50, public: bool = False) -> dict:
    data: dict[str, Any] = {
        "node_id": node_id,
        "updated": updated,
        "total_resources": {"sru": sru, "cru": 8, "mru": 16, "hru": 0},
    }
    if public:
        data["public_config"] = {"ipv4": "185.1.1.1/24"}
    return data


@pytest.fixture
def requests() -> list[str]:
    return []


def _serve(monkeypatch: pytest.MonkeyPatch, seen: list[str], handler) -> None:
    def fake_urlopen(req: Request, timeout: float | None = None) -> DummyResponse:
        seen.append(req.full_url)
        return handler(req.full_url)

    monkeypatch.setattr(registry_mod.request, "urlopen", fake_urlopen)


def test_base_url_requires_http_scheme() -> None:
    with pytest.raises(ValueError):
        RegistryClient(base_url="ftp://explorer")


def test_list_nodes_without_filters_returns_everything(monkeypatch, requests) -> None:
    nodes = [_node_json("a", NOW), _node_json("b", NOW - 5000, public=True)]
    _serve(monkeypatch, requests, lambda url: DummyResponse(200, nodes))

    result = RegistryClient("http://explorer/").list_nodes()

    assert [n.node_id for n in result] == ["a", "b"]
    assert requests[0].startswith("http://explorer/nodes?")
    assert result[1].has_public_connectivity
    assert result[0].capacity("sru") == 50


def test_list_nodes_filters_are_conjunctive(monkeypatch, requests) -> None:
    nodes = [
        _node_json("fresh-public", NOW - 10, public=True),
        _node_json("fresh-private", NOW - 10),
        _node_json("stale-public", NOW - 3600, public=True),
    ]
    _serve(monkeypatch, requests, lambda url: DummyResponse(200, nodes))

    result = RegistryClient("http://explorer").list_nodes(
        is_recently_active(now=lambda: NOW), has_public_connectivity()
    )

    assert [n.node_id for n in result] == ["fresh-public"]


def test_list_nodes_follows_pages(monkeypatch, requests) -> None:
    def handler(url: str) -> DummyResponse:
        page = 2 if "page=2" in url else 1
        return DummyResponse(200, [_node_json(f"n{page}", NOW)], {"Pages": "2"})

    _serve(monkeypatch, requests, handler)

    result = RegistryClient("http://explorer", page_size=1).list_nodes()

    assert [n.node_id for n in result] == ["n1", "n2"]
    assert len(requests) == 2


@pytest.mark.parametrize(
    "response",
    [
        DummyResponse(200, "not json"),
        DummyResponse(200, {"nodes": []}),
        DummyResponse(200, [{"updated": 1}]),
        DummyResponse(503, []),
    ],
)
def test_list_nodes_bad_responses_raise_registry_unavailable(monkeypatch, requests, response) -> None:
    _serve(monkeypatch, requests, lambda url: response)
    with pytest.raises(RegistryUnavailable):
        RegistryClient("http://explorer").list_nodes()


def test_transport_errors_raise_registry_unavailable(monkeypatch) -> None:
    def fake_urlopen(req: Request, timeout: float | None = None):
        raise error.URLError("connection refused")

    monkeypatch.setattr(registry_mod.request, "urlopen", fake_urlopen)
    with pytest.raises(RegistryUnavailable):
        RegistryClient("http://explorer").fetch_result(ReservationID("42"))


def test_http_error_raises_registry_unavailable(monkeypatch) -> None:
    def fake_urlopen(req: Request, timeout: float | None = None):
        raise error.HTTPError(req.full_url, 404, "Not Found", hdrs=None, fp=io.BytesIO(b"{}"))

    monkeypatch.setattr(registry_mod.request, "urlopen", fake_urlopen)
    with pytest.raises(RegistryUnavailable) as excinfo:
        RegistryClient("http://explorer").fetch_result(ReservationID("42"))
    assert excinfo.value.context["status"] == 404


def test_fetch_result_decodes_nested_result(monkeypatch, requests) -> None:
    body = {"result": {"id": "42", "type": "zdb", "state": "ok", "error": "", "data": {"Namespace": "ns"}}}
    _serve(monkeypatch, requests, lambda url: DummyResponse(200, body))

    result = RegistryClient("http://explorer").fetch_result(ReservationID("https://x/reservations/42"))

    assert requests == ["http://explorer/reservations/42"]
    assert result.state is ReservationState.OK
    assert result.kind == "zdb"
    assert result.data == {"Namespace": "ns"}


def test_fetch_result_without_result_field_fails(monkeypatch, requests) -> None:
    _serve(monkeypatch, requests, lambda url: DummyResponse(200, {"id": "42"}))
    with pytest.raises(RegistryUnavailable):
        RegistryClient("http://explorer").fetch_result(ReservationID("42"))


class ScriptedRegistry(RegistryClient):
    """Registry whose fetch_result replays a per-ID list of states."""

    def __init__(self, states: dict[str, list[str]]) -> None:
        self.sleeps: list[float] = []
        super().__init__("http://explorer", sleep=self.sleeps.append)
        self.states = states
        self.fetches: list[str] = []

    def fetch_result(self, reservation: ReservationID):
        from gb_provisioner.models.types import ReservationResult

        self.fetches.append(reservation.id)
        queue = self.states[reservation.id]
        state = queue.pop(0) if len(queue) > 1 else queue[0]
        return ReservationResult(id=reservation.id, kind="zdb", state=state)


def test_await_all_returns_terminal_results_in_order() -> None:
    registry = ScriptedRegistry({"a": ["pending", "deploy", "ok"], "b": ["error"]})

    results = registry.await_all([ReservationID("a"), ReservationID("b")], poll_interval=0.25)

    assert [(r.id, r.state.value) for r in results] == [("a", "ok"), ("b", "error")]
    assert registry.fetches == ["a", "a", "a", "b"]
    assert registry.sleeps == [0.25, 0.25]


def test_await_all_times_out_and_skips_remaining_ids() -> None:
    registry = ScriptedRegistry({"slow": ["pending"], "never": ["ok"]})

    with pytest.raises(ProvisionTimeout) as excinfo:
        registry.await_all([ReservationID("slow"), ReservationID("never")], max_polls=4)

    assert registry.fetches == ["slow"] * 4
    assert len(registry.sleeps) == 3
    assert excinfo.value.context["reservation"] == "slow"


def test_await_all_stops_when_cancelled() -> None:
    registry = ScriptedRegistry({"a": ["deploy"]})
    token = CancelToken()
    token.request_stop()

    with pytest.raises(ProvisionCancelled):
        registry.await_all([ReservationID("a")], max_polls=10, cancel=token)

    assert registry.fetches == ["a"]
    assert registry.sleeps == []


def test_await_all_keeps_polling_through_unpopulated_results(monkeypatch, requests) -> None:
    bodies = [
        {"result": {"id": "", "state": ""}},
        {"result": {"state": "queued", "id": None}},
        {"result": {"id": "r1", "type": "zdb", "state": "ok"}},
    ]
    _serve(monkeypatch, requests, lambda url: DummyResponse(200, bodies.pop(0)))
    sleeps: list[float] = []

    [result] = RegistryClient("http://explorer", sleep=sleeps.append).await_all(
        [ReservationID("r1")], max_polls=5
    )

    assert result.state is ReservationState.OK
    assert requests == ["http://explorer/reservations/r1"] * 3
    assert len(sleeps) == 2


def test_min_capacity_is_strict() -> None:
    check = has_min_capacity("sru", 10)
    assert not check(make_node("n", updated=NOW, sru=10))
    assert check(make_node("n", updated=NOW, sru=11))


def test_shuffle_is_a_permutation() -> None:
    nodes = [make_node(str(i), updated=NOW) for i in range(10)]
    shuffled = list(nodes)
    shuffle_nodes(shuffled, random.Random(3))
    assert sorted(n.node_id for n in shuffled) == sorted(n.node_id for n in nodes)
    assert [n.node_id for n in shuffled] != [n.node_id for n in nodes]


def test_pick_public_node_requires_a_candidate(monkeypatch, requests) -> None:
    _serve(monkeypatch, requests, lambda url: DummyResponse(200, [_node_json("p", 0)]))
    with pytest.raises(NodeSelectionError):
        pick_public_node(RegistryClient("http://explorer"))


def test_pick_public_node_picks_eligible(monkeypatch, requests) -> None:
    now = int(time.time())
    nodes = [_node_json("private", now), _node_json("public", now, public=True)]
    _serve(monkeypatch, requests, lambda url: DummyResponse(200, nodes))

    assert pick_public_node(RegistryClient("http://explorer")) == "public"
