"""Server-master core for a dataflow engine: executors, scheduling, jobs and leadership."""

__version__ = "0.1.0"

__all__ = [
    "config",
    "dag",
    "executor_manager",
    "job_fsm",
    "member",
    "resource",
    "server",
]