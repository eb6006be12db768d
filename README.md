# flowmaster

`flowmaster` holds the coordinating side of a small dataflow engine: the
server master. It keeps track of the executors that join the cluster, places
tasks on their capacity, follows job masters through their lifecycle, and
serves requests only when it is the leader, or hands them to a client for the
leader that you supply.

It is a library with no command-line program. You build the pieces you need
and drive them from your own code. All durations are in seconds unless a name
says otherwise (heartbeat TTLs passed as `ttl_ms` are in milliseconds).

## Modules

| Module | Purpose |
| --- | --- |
| `flowmaster.resource` | `CapacityResourceManager` records each executor's capacity, reserved and used units and its `ExecutorStatus`, and places `ScheduleTask` items on running executors that have room, returning `ScheduleResult` entries. Updating an unknown executor raises `UnknownExecutorError`. |
| `flowmaster.dag` | `DAGWalker` visits every `Node` of a `DAG` once, depth first, calling your callback for each, and raises `DAGDepthExceededError` when the walk goes deeper than its `maximal_depth` (100 by default). |
| `flowmaster.job_fsm` | `JobFsm` moves each `JobMeta` between the *wait-ack*, *online* and *pending* states and redispatches pending jobs on demand. Acting on a worker that is not in the expected state raises `WorkerNotFoundError`. |
| `flowmaster.executor_manager` | `ExecutorManager` registers executors (`NodeInfo`), handles their heartbeats (`HeartbeatResponse`, `ErrorCode`), drops executors whose heartbeat has expired, and can re-register executors from stored JSON node records. |
| `flowmaster.config` | `Config` reads command-line flags and TOML, fills in defaults, parses durations, and renders itself as JSON or TOML. Bad input raises `ConfigError`. `parse_duration` and `parse_urls` can be used on their own. |
| `flowmaster.member` | `Member` describes a server-master node; `StoreMembership`, an implementation of the `Membership` interface, joins stored node records with a list of `ClusterMember` entries to flag the serving leader and the store leader. |
| `flowmaster.server` | `Server` ties it together: leader tracking, forwarding decisions, readiness checks, heartbeats, executor registration, task scheduling and meta-store queries. |

## Placing tasks

```python
from flowmaster.resource import CapacityResourceManager, ExecutorStatus, ScheduleTask

manager = CapacityResourceManager()
manager.register("exec-1", "127.0.0.1:10001", 2)
manager.update("exec-1", 0, 0, ExecutorStatus.RUNNING)

manager.allocate([ScheduleTask(task_id=1, cost=1)])
# {1: ScheduleResult(executor_id='exec-1', addr='127.0.0.1:10001')}
```

Only `RUNNING` executors whose capacity exceeds both their used and reserved
units are considered. Executors are tried round-robin; placing a task does not
consume the executor's capacity. `allocate` returns `None` when there is no
available executor or a task fits nowhere.

## Executors and heartbeats

```python
from flowmaster.executor_manager import ExecutorManager
from flowmaster.resource import ExecutorStatus

removed = []
manager = ExecutorManager(0.1, 0.01, on_remove=lambda eid, when: removed.append(eid))
info = manager.allocate_new_executor("127.0.0.1:10001", 2)

resp = manager.handle_heartbeat(info.id, ExecutorStatus.RUNNING, 10, 0)
assert resp.err is None

manager.start()   # checks liveness every keep_alive_interval seconds
...
manager.stop()
```

A heartbeat for an unknown executor answers with `ErrorCode.UNKNOWN_EXECUTOR`,
and one for an executor already marked tombstone with
`ErrorCode.TOMBSTONE_EXECUTOR`. `check_alive_once` removes the first expired
executor it finds and returns its id; the background loop started by `start`
calls it repeatedly. `reset_from_json` re-registers every record of type
`NodeType.EXECUTOR` from a list of `NodeInfo.to_json` documents.

## Job lifecycle

A job master handled by `JobFsm` is always in one of three states:

```
 job_dispatched ──► wait-ack ──(job_online)──► online
                      ▲   │                      │
                      │   │                (job_offline)
    (iter_pending_jobs)   │                      │
                      │   └(job_dispatch_failed)─┤
                      │                          ▼
                      └──────────────────────  pending
```

`iter_pending_jobs(dispatch)` calls `dispatch` for each pending job and files
the job under the id it returns. If `dispatch` raises, the pass stops and the
remaining jobs stay pending. `job_offline` for a worker that is not online is
ignored. `pending_job_count()`, `wait_ack_job_count()` and
`online_job_count()` report how many jobs sit in each state.

## Walking a DAG

```python
from flowmaster.dag import DAG, DAGWalker, Node

shared = Node(3)
dag = DAG(Node(0, [Node(1, [shared]), Node(2, [shared])]))

seen = []
DAGWalker(lambda node: seen.append(node.id)).walk(dag)
# seen == [0, 1, 3, 2]
```

An exception raised by the callback stops the walk and propagates.

## Configuration

`Config.parse(arguments)` accepts `--master-addr`, `--advertise-addr`,
`--config`, `-L` (log level), `--log-file`, `--log-format`, `--name`,
`--initial-cluster`, `--peer-urls`, `--advertise-peer-urls`, `-V` and
`--print-sample-config`. When `--config` names a TOML file, the file is read
first and the flags given are applied on top of it. Unknown keys in the file,
non-string values and stray positional arguments raise `ConfigError`;
`--print-sample-config` prints the sample and raises `ConfigError` with
`help_requested` set.

`Config.adjust` fills in what was left out: the advertise address defaults to
the master address, and the keep-alive interval, keep-alive TTL and RPC
timeout default to `500ms`, `20s` and `3s` and are parsed into seconds.

```python
from flowmaster.config import Config, parse_duration, parse_urls

config = Config()
config.load_toml_string('''
master-addr = "127.0.0.1:10240"
[etcd]
name = "master-1"
''')
config.adjust()

print(config.to_json())
print(config.to_toml())

parse_duration("1m30s")   # 90.0
# Items without a scheme get "http://"; a missing host becomes 0.0.0.0.
parse_urls("127.0.0.1:10240,:10241")
```

## Serving requests

```python
from flowmaster.config import Config
from flowmaster.resource import ExecutorStatus, ScheduleTask
from flowmaster.server import Server

config = Config(master_addr="127.0.0.1:10240")
config.etcd.name = "master-1"
config.adjust()

server = Server(config)
server.start()            # this node becomes the leader and is ready
executor_id = server.register_executor("127.0.0.1:10001", 2)
server.heartbeat(executor_id, ExecutorStatus.RUNNING, 10_000, 0)
server.schedule_task([ScheduleTask(task_id=1, cost=1)])
server.stop()
```

Before `start`, `api_pre_check` raises `MasterNotReadyError`; `heartbeat`
instead answers with `ErrorCode.MASTER_NOT_READY`. Each request first waits up
to `leader_wait` seconds for a leader to be known (`set_leader`). If this node
is the leader it serves the request; otherwise, if a leader client was
installed with `set_leader_client`, the request is passed to that object's
method of the same name; otherwise `NotForwardedError` is raised.
`schedule_task` raises `ResourceNotEnoughError` when the tasks cannot be
placed. `query_meta_store` returns the advertised address for both
`StoreType` values and raises `ValueError` for any other.

`update_members(etcd_leader_id)` refreshes `Server.members` from the
`Membership` given to the constructor. `with_host(":8080")` returns
`"127.0.0.1:8080"`; any other address is returned unchanged.

## What this package does not do

`flowmaster` has no network layer and no storage of its own. It does not run
an RPC server, embed or talk to a metadata store, campaign in leader
elections, or create job masters on executors. Leadership, the leader client,
the stored node records and the cluster member list are all handed to it by
the caller.

## Running the tests

Install the `test` extra and run `pytest`.