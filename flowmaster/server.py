"""Server master: serves executor and job requests, forwarding to the leader."""

from __future__ import annotations

import logging
import threading
from enum import IntEnum
from typing import Any, Iterable

from flowmaster.config import Config, parse_urls
from flowmaster.executor_manager import (
    ErrorCode,
    ExecutorManager,
    HeartbeatResponse,
    NodeInfo,
    NodeType,
)
from flowmaster.member import Member, Membership
from flowmaster.resource import ExecutorStatus, ScheduleResult, ScheduleTask

logger = logging.getLogger(__name__)

DEFAULT_LEADER_WAIT = 3.0


class StoreType(IntEnum):
    """Kind of metadata store a client may ask for."""

    SERVICE_DISCOVERY = 0
    SYSTEM_META_STORE = 1


class MasterNotReadyError(RuntimeError):
    """Raised when the server master is not ready to serve."""

    def __init__(self) -> None:
        super().__init__("server master is not ready")


class NotForwardedError(RuntimeError):
    """Raised when a request cannot be served here nor forwarded to the leader."""

    def __init__(self, method: str) -> None:
        super().__init__(f"request {method} can not be forwarded to leader")
        self.method = method


class ResourceNotEnoughError(RuntimeError):
    """Raised when the cluster cannot place the requested tasks."""

    def __init__(self) -> None:
        super().__init__("cluster resource is not enough")


def _split_host_port(addr: str) -> tuple[str, str]:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or addr[end + 1 : end + 2] != ":":
            raise ValueError(f"invalid address {addr!r}")
        host, port = addr[1:end], addr[end + 2 :]
    else:
        host, sep, port = addr.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"invalid address {addr!r}")
    if "[" in port or "]" in port:
        raise ValueError(f"invalid address {addr!r}")
    return host, port


def with_host(addr: str) -> str:
    """Fill in 127.0.0.1 for an address that has a port but no host."""
    try:
        host, port = _split_host_port(addr)
    except ValueError:
        return addr
    if not host:
        return f"127.0.0.1:{port}"
    return addr


class Server:
    """A server master node.

    ``set_leader_client`` installs an object exposing the same request
    methods as this class; requests are forwarded to it when this node is
    not the leader.
    """

    def __init__(self, config: Config, membership: Membership | None = None) -> None:
        # Validates the master address list.
        parse_urls(config.master_addr)
        self.config = config
        self.membership = membership
        self.info = NodeInfo(
            id=config.etcd.name,
            addr=config.advertise_addr,
            type=NodeType.SERVER_MASTER,
        )
        self.executor_manager = ExecutorManager(
            config.keepalive_ttl, config.keepalive_interval
        )
        self.leader_wait = DEFAULT_LEADER_WAIT
        self._leader_cond = threading.Condition()
        self._leader: Member | None = None
        self._client_lock = threading.Lock()
        self._leader_client: Any = None
        self._members_lock = threading.Lock()
        self._members: list[Member] = []
        self._initialized = threading.Event()

    @property
    def name(self) -> str:
        return self.config.etcd.name

    @property
    def members(self) -> list[Member]:
        """The last known server master members."""
        with self._members_lock:
            return list(self._members)

    def member(self) -> str:
        """JSON description of this server as a member."""
        return Member(name=self.name, advertise_addr=self.config.advertise_addr).to_json()

    def check_leader(self) -> tuple[Member | None, bool]:
        """Return the known leader and whether it is a real (named) member."""
        with self._leader_cond:
            leader = self._leader
        if leader is None:
            return None, False
        return leader, leader.name != ""

    def set_leader(self, member: Member | None) -> None:
        """Record the current leader."""
        with self._leader_cond:
            self._leader = member
            self._leader_cond.notify_all()

    def set_leader_client(self, client: Any) -> None:
        """Install, or with None remove, the client used to reach the leader."""
        with self._client_lock:
            old, self._leader_client = self._leader_client, client
        if old is not None and old is not client:
            _close_quietly(old)

    def is_leader_and_need_forward(
        self, timeout: float = DEFAULT_LEADER_WAIT
    ) -> tuple[bool, bool]:
        """Wait up to ``timeout`` seconds for a leader.

        Returns whether this node leads, and whether a leader client exists.
        Both are False if no leader appears in time.
        """
        with self._leader_cond:
            found = self._leader_cond.wait_for(
                lambda: self._leader is not None and self._leader.name != "",
                timeout,
            )
            leader = self._leader
        if not found or leader is None:
            logger.error("leader is not found, please retry later")
            return False, False
        with self._client_lock:
            need_forward = self._leader_client is not None
        return leader.name == self.name, need_forward

    def _forward_target(self, method: str) -> Any:
        """The leader client to forward to, or None to serve locally."""
        logger.debug("request %s", method)
        is_leader, need_forward = self.is_leader_and_need_forward(self.leader_wait)
        if is_leader:
            return None
        if need_forward:
            leader, exists = self.check_leader()
            with self._client_lock:
                client = self._leader_client
            if exists and client is not None:
                logger.info(
                    "will forward rpc request from %s to %s: %s",
                    self.name,
                    leader.name if leader else "",
                    method,
                )
                return client
        raise NotForwardedError(method)

    def api_pre_check(self) -> None:
        """Raise MasterNotReadyError unless the server is ready to serve."""
        if not self._initialized.is_set():
            raise MasterNotReadyError()

    def start(self) -> None:
        """Start background work and take leadership as a single node."""
        self.executor_manager.start()
        self.set_leader(
            Member(
                name=self.name,
                advertise_addr=self.config.advertise_addr,
                is_serv_leader=True,
                is_etcd_leader=True,
            )
        )
        self._initialized.set()

    def stop(self) -> None:
        """Stop background work and drop the leader client."""
        self.executor_manager.stop()
        with self._client_lock:
            client, self._leader_client = self._leader_client, None
        if client is not None:
            _close_quietly(client)
        self._initialized.clear()

    def heartbeat(
        self,
        executor_id: str,
        status: ExecutorStatus | int,
        ttl_ms: int,
        resource_usage: int,
    ) -> HeartbeatResponse:
        """Handle an executor heartbeat, replying with the masters' addresses."""
        client = self._forward_target("heartbeat")
        if client is not None:
            return client.heartbeat(executor_id, status, ttl_ms, resource_usage)
        try:
            self.api_pre_check()
        except MasterNotReadyError as exc:
            return HeartbeatResponse(err=ErrorCode.MASTER_NOT_READY, message=str(exc))
        resp = self.executor_manager.handle_heartbeat(
            executor_id, status, ttl_ms, resource_usage
        )
        if resp.err is None:
            resp.addrs = [member.advertise_addr for member in self.members]
            leader, exists = self.check_leader()
            if exists and leader is not None:
                resp.leader = leader.advertise_addr
        return resp

    def register_executor(self, address: str, capability: int) -> str:
        """Register a joining executor and return its new id."""
        client = self._forward_target("register_executor")
        if client is not None:
            return client.register_executor(address, capability)
        self.api_pre_check()
        info = self.executor_manager.allocate_new_executor(address, capability)
        return info.id

    def schedule_task(
        self, tasks: Iterable[ScheduleTask]
    ) -> dict[int, ScheduleResult]:
        """Place tasks on executors."""
        client = self._forward_target("schedule_task")
        if client is not None:
            return client.schedule_task(tasks)
        self.api_pre_check()
        result = self.executor_manager.allocate(tasks)
        if result is None:
            raise ResourceNotEnoughError()
        return result

    def query_meta_store(self, store_type: StoreType | int) -> str:
        """Address of the requested metadata store."""
        try:
            kind = StoreType(store_type)
        except ValueError:
            raise ValueError(f"invalid meta store type: {store_type}") from None
        # Both stores are served by this node for now.
        if kind in (StoreType.SERVICE_DISCOVERY, StoreType.SYSTEM_META_STORE):
            return self.config.advertise_addr
        raise ValueError(f"invalid meta store type: {store_type}")

    def update_members(self, etcd_leader_id: int) -> None:
        """Refresh the member list from the membership source."""
        if self.membership is None:
            raise RuntimeError("no membership configured")
        leader, exists = self.check_leader()
        members = self.membership.get_members(leader if exists else None, etcd_leader_id)
        with self._members_lock:
            self._members = list(members)
        logger.info("update server master members: %s", members)


def _close_quietly(client: Any) -> None:
    close = getattr(client, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as exc:  # noqa: BLE001
        logger.warning("close leader client met error: %s", exc)