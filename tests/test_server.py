import threading
import time

import pytest

from flowmaster.config import Config
from flowmaster.executor_manager import ErrorCode, HeartbeatResponse, NodeInfo, NodeType
from flowmaster.member import ClusterMember, Member, StoreMembership
from flowmaster.resource import ExecutorStatus, ScheduleResult, ScheduleTask
from flowmaster.server import (
    MasterNotReadyError,
    NotForwardedError,
    ResourceNotEnoughError,
    Server,
    StoreType,
    with_host,
)

NAME = "test-check-leader-and-need-forward"
ADDR = "127.0.0.1:10240"


def _config(name=NAME):
    cfg = Config(master_addr=ADDR)
    cfg.etcd.name = name
    cfg.adjust()
    return cfg


@pytest.fixture
def server():
    srv = Server(_config())
    srv.leader_wait = 0
    yield srv
    srv.stop()


class FakeLeaderClient:
    def __init__(self):
        self.calls = []
        self.closed = False

    def heartbeat(self, executor_id, status, ttl_ms, resource_usage):
        self.calls.append(("heartbeat", executor_id, status, ttl_ms, resource_usage))
        return HeartbeatResponse(leader="leader:1")

    def register_executor(self, address, capability):
        self.calls.append(("register_executor", address, capability))
        return "forwarded-id"

    def close(self):
        self.closed = True


def test_server_info(server):
    assert server.info.id == NAME
    assert server.info.addr == ADDR
    assert server.info.type == NodeType.SERVER_MASTER


def test_member_json(server):
    assert Member.from_json(server.member()) == Member(name=NAME, advertise_addr=ADDR)


def test_check_leader_initially_missing(server):
    assert server.check_leader() == (None, False)
    server.set_leader(Member())
    leader, exists = server.check_leader()
    assert leader == Member()
    assert exists is False


def test_check_leader_and_need_forward_no_leader(server):
    start = time.monotonic()
    assert server.is_leader_and_need_forward(0) == (False, False)
    assert time.monotonic() - start < 1.0


def test_check_leader_and_need_forward_waits(server):
    results = []
    waiter = threading.Thread(
        target=lambda: results.append(server.is_leader_and_need_forward(3.0))
    )
    waiter.start()
    time.sleep(0.2)
    server.set_leader_client(FakeLeaderClient())
    server.set_leader(Member(name=NAME))
    waiter.join()
    assert results == [(True, True)]
    assert server.is_leader_and_need_forward(0) == (True, True)
    leader, exists = server.check_leader()
    assert exists is True
    assert leader.name == NAME


def test_api_pre_check_before_start(server):
    with pytest.raises(MasterNotReadyError):
        server.api_pre_check()


def test_heartbeat_not_ready(server):
    server.set_leader(Member(name=NAME))
    resp = server.heartbeat("exec-1", ExecutorStatus.RUNNING, 1000, 0)
    assert resp.err == ErrorCode.MASTER_NOT_READY


def test_start_serves_requests(server):
    server.start()
    leader, exists = server.check_leader()
    assert exists is True
    assert leader.name == NAME
    assert leader.is_serv_leader is True

    executor_id = server.register_executor("127.0.0.1:10001", 2)
    assert server.executor_manager.executor_ids() == [executor_id]

    resp = server.heartbeat(executor_id, ExecutorStatus.RUNNING, 10_000, 0)
    assert resp.err is None
    assert resp.leader == ADDR
    assert resp.addrs == []

    schedule = server.schedule_task([ScheduleTask(task_id=1, cost=1)])
    assert schedule == {1: ScheduleResult(executor_id=executor_id, addr="127.0.0.1:10001")}


def test_heartbeat_unknown_executor(server):
    server.start()
    resp = server.heartbeat("missing", ExecutorStatus.RUNNING, 1000, 0)
    assert resp.err == ErrorCode.UNKNOWN_EXECUTOR
    assert resp.addrs == []


def test_schedule_without_resources(server):
    server.start()
    with pytest.raises(ResourceNotEnoughError):
        server.schedule_task([ScheduleTask(task_id=1, cost=1)])


def test_forward_to_leader(server):
    client = FakeLeaderClient()
    server.set_leader_client(client)
    server.set_leader(Member(name="other", advertise_addr="leader:1"))
    resp = server.heartbeat("exec-1", ExecutorStatus.RUNNING, 100, 3)
    assert resp.leader == "leader:1"
    assert server.register_executor("127.0.0.1:1", 4) == "forwarded-id"
    assert client.calls == [
        ("heartbeat", "exec-1", ExecutorStatus.RUNNING, 100, 3),
        ("register_executor", "127.0.0.1:1", 4),
    ]


def test_not_forwarded_without_client(server):
    server.set_leader(Member(name="other"))
    with pytest.raises(NotForwardedError):
        server.register_executor("127.0.0.1:1", 1)


def test_not_forwarded_without_leader(server):
    with pytest.raises(NotForwardedError):
        server.schedule_task([ScheduleTask(task_id=1, cost=1)])


def test_stop_closes_leader_client(server):
    client = FakeLeaderClient()
    server.set_leader_client(client)
    server.stop()
    assert client.closed is True


def test_query_meta_store(server):
    assert server.query_meta_store(StoreType.SERVICE_DISCOVERY) == ADDR
    assert server.query_meta_store(StoreType.SYSTEM_META_STORE) == ADDR
    with pytest.raises(ValueError):
        server.query_meta_store(99)


def test_update_server_members():
    name = "membership-test2"
    node_values = [
        NodeInfo(id=name, addr=ADDR, type=NodeType.SERVER_MASTER).to_json(),
        NodeInfo(
            id="membership-executor-test1", addr="127.0.0.1:10000", type=NodeType.EXECUTOR
        ).to_json(),
    ]
    membership = StoreMembership(node_values, [ClusterMember(id=5, name=name)])
    srv = Server(_config(name), membership)
    assert srv.check_leader() == (None, False)

    member = Member(
        name=name, is_serv_leader=True, is_etcd_leader=True, advertise_addr=ADDR
    )
    srv.set_leader(member)
    srv.update_members(5)
    assert srv.members == [member]


def test_update_members_requires_membership(server):
    with pytest.raises(RuntimeError):
        server.update_members(1)


@pytest.mark.parametrize(
    "addr, expected",
    [
        (":8080", "127.0.0.1:8080"),
        ("10.0.0.1:80", "10.0.0.1:80"),
        ("localhost", "localhost"),
        ("[::1]:80", "[::1]:80"),
        ("[]:80", "127.0.0.1:80"),
    ],
)
def test_with_host(addr, expected):
    assert with_host(addr) == expected