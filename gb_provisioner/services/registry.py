"""Read-only client for the grid registry (explorer) API."""

from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence
from urllib import error, parse, request

from pydantic import TypeAdapter, ValidationError

from gb_common.errors import (
    NodeSelectionError,
    ProvisionCancelled,
    ProvisionTimeout,
    RegistryUnavailable,
)

from gb_provisioner.engine.cancel import CancelToken
from gb_provisioner.models.types import Node, ReservationID, ReservationResult

logger = logging.getLogger(__name__)

NodeFilter = Callable[[Node], bool]

_NODE_LIST = TypeAdapter(List[Node])

DEFAULT_HEARTBEAT_WINDOW = 10 * 60


def _validate_http_url(url: str) -> str:
    parsed = parse.urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"registry base_url must be an http(s) URL, got: {url}")
    return url


@dataclass
class RegistryClient:
    """Query nodes and reservation results; never mutates remote state."""

    base_url: str
    timeout_seconds: float = 30.0
    page_size: int = 100
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        self.base_url = _validate_http_url(self.base_url.rstrip("/"))

    def list_nodes(self, *filters: NodeFilter) -> List[Node]:
        """Return every node satisfying all ``filters``."""
        nodes = self._fetch_nodes()
        if not filters:
            return nodes
        return [node for node in nodes if all(check(node) for check in filters)]

    def fetch_result(self, reservation: ReservationID) -> ReservationResult:
        """Fetch the current result of one reservation."""
        body, _ = self._get(f"/reservations/{parse.quote(reservation.id, safe='')}")
        if not isinstance(body, dict) or not isinstance(body.get("result"), dict):
            raise RegistryUnavailable(
                f"reservation {reservation.id}: response has no 'result' object",
                context={"reservation": reservation.id},
            )
        try:
            return ReservationResult.model_validate(body["result"])
        except ValidationError as exc:
            raise RegistryUnavailable(
                f"failed to decode result of reservation {reservation.id}",
                context={"reservation": reservation.id},
                cause=exc,
            ) from exc

    def await_all(
        self,
        reservations: Sequence[ReservationID],
        *,
        poll_interval: float = 1.0,
        max_polls: int = 20,
        cancel: CancelToken | None = None,
    ) -> List[ReservationResult]:
        """Poll each reservation in turn until it reaches ``ok`` or ``error``.

        At most ``max_polls`` fetches are made per reservation. The first
        reservation to exceed the budget raises `ProvisionTimeout`; later ones
        are not polled.
        """
        if max_polls < 1:
            raise ValueError("max_polls must be at least 1")
        results: List[ReservationResult] = []
        for reservation in reservations:
            results.append(
                self._await_one(reservation, poll_interval, max_polls, cancel)
            )
        return results

    def _await_one(
        self,
        reservation: ReservationID,
        poll_interval: float,
        max_polls: int,
        cancel: CancelToken | None,
    ) -> ReservationResult:
        for poll in range(1, max_polls + 1):
            logger.debug("Waiting for reservation %s", reservation.id)
            result = self.fetch_result(reservation)
            logger.debug(
                "Reservation %s state=%s", reservation.id, result.state.value
            )
            if result.state.terminal:
                return result
            if poll >= max_polls:
                break
            if cancel is not None and cancel.should_stop():
                raise ProvisionCancelled(
                    f"stopped waiting for reservation '{reservation}'",
                    context={"reservation": reservation.id, "polls": poll},
                )
            self.sleep(poll_interval)
        raise ProvisionTimeout(
            f"failed to wait for reservation '{reservation}', timeout exceeded",
            context={"reservation": reservation.id, "polls": max_polls},
        )

    def _fetch_nodes(self) -> List[Node]:
        body, headers = self._get("/nodes", {"page": 1, "size": self.page_size})
        raw: list[Any] = self._as_list(body)
        pages = self._page_count(headers)
        for page in range(2, pages + 1):
            body, _ = self._get("/nodes", {"page": page, "size": self.page_size})
            raw.extend(self._as_list(body))
        try:
            return _NODE_LIST.validate_python(raw)
        except ValidationError as exc:
            raise RegistryUnavailable("failed to decode nodes result", cause=exc) from exc

    @staticmethod
    def _as_list(body: Any) -> list[Any]:
        if not isinstance(body, list):
            raise RegistryUnavailable("failed to list nodes: expected a JSON array")
        return list(body)

    @staticmethod
    def _page_count(headers: Any) -> int:
        value = headers.get("Pages") if headers is not None else None
        try:
            return max(1, int(value)) if value is not None else 1
        except (TypeError, ValueError):
            return 1

    def _get(self, path: str, query: Optional[dict[str, Any]] = None) -> tuple[Any, Any]:
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{parse.urlencode(query)}"
        req = request.Request(url, headers={"Accept": "application/json"}, method="GET")
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as resp:  # nosec B310
                status = resp.status
                headers = resp.headers
                body = resp.read().decode("utf-8")
        except error.HTTPError as exc:
            raise RegistryUnavailable(
                f"registry returned {exc.code} for {path}",
                context={"url": url, "status": exc.code},
                cause=exc,
            ) from exc
        except (error.URLError, OSError) as exc:
            raise RegistryUnavailable(
                f"registry request failed: {exc}", context={"url": url}, cause=exc
            ) from exc
        if status != 200:
            raise RegistryUnavailable(
                f"registry returned {status} for {path}",
                context={"url": url, "status": status},
            )
        try:
            return json.loads(body), headers
        except json.JSONDecodeError as exc:
            raise RegistryUnavailable(
                f"registry returned invalid JSON for {path}",
                context={"url": url},
                cause=exc,
            ) from exc


def is_recently_active(
    window_seconds: int = DEFAULT_HEARTBEAT_WINDOW,
    now: Callable[[], float] = time.time,
) -> NodeFilter:
    """Nodes whose last heartbeat is within ``window_seconds``."""

    def _check(node: Node) -> bool:
        return (int(now()) - node.updated) < window_seconds

    return _check


def has_public_connectivity() -> NodeFilter:
    def _check(node: Node) -> bool:
        return node.has_public_connectivity

    return _check


def has_min_capacity(kind: str, threshold: int) -> NodeFilter:
    """Nodes offering strictly more than ``threshold`` units of ``kind``."""

    def _check(node: Node) -> bool:
        return node.capacity(kind) > threshold

    return _check


def shuffle_nodes(nodes: list[Node], rng: Optional[random.Random] = None) -> None:
    """Fisher-Yates shuffle, in place."""
    chooser = rng or random
    for i in range(len(nodes) - 1, 0, -1):
        j = chooser.randint(0, i)
        nodes[i], nodes[j] = nodes[j], nodes[i]


def pick_public_node(
    registry: RegistryClient,
    *,
    filters: Iterable[NodeFilter] = (),
    rng: Optional[random.Random] = None,
) -> str:
    """Choose a random recently-active node with a public interface."""
    nodes = registry.list_nodes(is_recently_active(), has_public_connectivity(), *filters)
    if not nodes:
        raise NodeSelectionError("no public nodes found")
    logger.debug("Found %d public nodes", len(nodes))
    shuffle_nodes(nodes, rng)
    return nodes[0].node_id
