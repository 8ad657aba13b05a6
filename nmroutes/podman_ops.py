from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

import docker
from docker.errors import DockerException

from .db import log_event
from .routes import PeerQueryFailed, Route, normalize_destination, normalize_nexthop
from .settings import settings


@dataclass(frozen=True)
class Peer:
    name: str
    address: str
    subnets: tuple[str, ...]

    def routes(self) -> list[Route]:
        return [Route(s, self.address) for s in self.subnets]


class PeerEnumerator:
    def list_peers(self) -> list[Peer]:
        raise NotImplementedError

    def list_peer_routes(self) -> list[Route]:
        routes: list[Route] = []
        for peer in self.list_peers():
            routes.extend(peer.routes())
        return routes


def parse_mesh_routes(output: str, iface_prefix: str = "nm-") -> list[str]:
    """Extract mesh subnets from `ip route` output.

    A line counts when it references an interface named with `iface_prefix`
    and its first field is a CIDR; destinations are normalised.
    """
    subnets: list[str] = []
    for line in output.splitlines():
        fields = line.split()
        if not fields or "/" not in fields[0]:
            continue
        if not any(f.startswith(iface_prefix) for f in fields[1:]):
            continue
        try:
            subnet = normalize_destination(fields[0])
        except ValueError:
            continue
        if subnet not in subnets:
            subnets.append(subnet)
    return subnets


def container_address(attrs: dict[str, Any]) -> str | None:
    """Address of a container as reported by `inspect`.

    Rootful bridge containers expose it at the top level; containers on named
    networks only list it per network.
    """
    net = attrs.get("NetworkSettings") or {}
    if net.get("IPAddress"):
        return net["IPAddress"]
    for _, info in sorted((net.get("Networks") or {}).items()):
        if info and info.get("IPAddress"):
            return info["IPAddress"]
    return None


class ContainerPeerEnumerator(PeerEnumerator):
    """Discovers mesh peers among running podman containers."""

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        pattern: str | None = None,
        iface_prefix: str | None = None,
    ) -> None:
        self._client_override = client
        self.pattern = re.compile(pattern or settings.peer_pattern)
        self.iface_prefix = iface_prefix or settings.mesh_iface_prefix

    def _client(self) -> docker.DockerClient:
        if self._client_override is not None:
            return self._client_override
        if settings.podman_url:
            return docker.DockerClient(base_url=settings.podman_url)
        return docker.from_env()

    def _containers(self) -> Iterable[Any]:
        c = self._client()
        running = c.containers.list(filters={"status": "running"})
        return sorted((x for x in running if self.pattern.search(x.name)), key=lambda x: x.name)

    def list_peers(self) -> list[Peer]:
        try:
            containers = list(self._containers())
        except DockerException as e:
            raise PeerQueryFailed(f"Cannot list containers: {e}") from e

        peers: list[Peer] = []
        for cont in containers:
            peers.append(self._inspect_peer(cont))
        return peers

    def _inspect_peer(self, cont: Any) -> Peer:
        try:
            cont.reload()
            address = container_address(cont.attrs)
            if not address:
                raise PeerQueryFailed(f"Container {cont.name} has no IP address")
            result = cont.exec_run(["ip", "route"])
        except DockerException as e:
            raise PeerQueryFailed(f"Cannot query routes of {cont.name}: {e}") from e

        if result.exit_code != 0:
            raise PeerQueryFailed(f"'ip route' failed in {cont.name} (exit {result.exit_code})")
        try:
            address = normalize_nexthop(address)
        except ValueError as e:
            raise PeerQueryFailed(f"Container {cont.name} has an invalid address: {address!r}") from e

        output = result.output.decode("utf-8", errors="replace") if isinstance(result.output, bytes) else str(result.output or "")
        subnets = parse_mesh_routes(output, self.iface_prefix)
        if not subnets:
            log_event("DEBUG", f"Peer {cont.name} advertises no mesh routes", nexthop=address)
        return Peer(name=cont.name, address=address, subnets=tuple(subnets))
