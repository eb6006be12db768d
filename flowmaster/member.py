"""Server master membership: member records and how they are discovered."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable

from flowmaster.executor_manager import NodeInfo, NodeType

logger = logging.getLogger(__name__)


@dataclass
class Member:
    """A server master member and its leadership flags."""

    name: str = ""
    advertise_addr: str = ""
    is_serv_leader: bool = False
    is_etcd_leader: bool = False

    def to_json(self) -> str:
        """Serialise the member as a JSON document."""
        return json.dumps(
            {
                "is-serv-leader": self.is_serv_leader,
                "is-etcd-leader": self.is_etcd_leader,
                "name": self.name,
                "advertise-addr": self.advertise_addr,
            }
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> Member:
        """Build a member from a JSON document; ValueError if it is malformed."""
        raw = json.loads(data)
        if not isinstance(raw, dict):
            raise ValueError("member must be a JSON object")
        return cls(
            name=str(raw.get("name", "")),
            advertise_addr=str(raw.get("advertise-addr", "")),
            is_serv_leader=bool(raw.get("is-serv-leader", False)),
            is_etcd_leader=bool(raw.get("is-etcd-leader", False)),
        )


@dataclass(frozen=True)
class ClusterMember:
    """A member of the metadata store cluster."""

    id: int
    name: str


class Membership(ABC):
    """Source of the current server master members."""

    @abstractmethod
    def get_members(
        self, leader: Member | None, etcd_leader_id: int
    ) -> list[Member]:
        """Return the members, flagging the service and store leaders."""


class StoreMembership(Membership):
    """Membership built from stored node records and the store's member list."""

    def __init__(
        self,
        node_values: Iterable[str | bytes],
        cluster_members: Iterable[ClusterMember],
    ) -> None:
        self.node_values = list(node_values)
        self.cluster_members = list(cluster_members)

    def master_nodes(self) -> dict[str, NodeInfo]:
        """Server master node records keyed by node id."""
        nodes: dict[str, NodeInfo] = {}
        for value in self.node_values:
            try:
                info = NodeInfo.from_json(value)
            except ValueError as exc:
                raise ValueError(f"decode node info failed: {exc}") from exc
            if info.type == NodeType.SERVER_MASTER:
                nodes[info.id] = info
        return nodes

    def get_members(
        self, leader: Member | None, etcd_leader_id: int
    ) -> list[Member]:
        servers = self.master_nodes()
        members = []
        for cluster_member in self.cluster_members:
            server = servers.get(cluster_member.name)
            if server is None:
                continue
            members.append(
                Member(
                    name=cluster_member.name,
                    advertise_addr=server.addr,
                    is_etcd_leader=cluster_member.id == etcd_leader_id,
                    is_serv_leader=leader is not None
                    and cluster_member.name == leader.name,
                )
            )
        return members