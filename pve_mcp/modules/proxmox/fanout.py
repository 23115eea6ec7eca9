"""Concurrent per-target queries with per-target failure isolation.

Every cluster-wide tool follows the same shape: enumerate targets, ask each
one the same question, keep whatever answered.  ``FanOutAggregator`` owns
that shape so the domain modules only supply the per-target fetch.

Each submitted future is the only writer of its own result slot; the
parent reads the slots once every future has finished (or the deadline
has passed), so no locking is involved.
"""

import enum
import logging
import math
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from itertools import chain
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TargetKind(enum.Enum):
    QEMU = "qemu"
    LXC = "lxc"
    NODE = "node"


@dataclass(frozen=True)
class Target:
    node: str
    kind: TargetKind = TargetKind.NODE

    def sort_key(self):
        return (self.node, self.kind.value)

    def __str__(self):
        if self.kind is TargetKind.NODE:
            return self.node
        return f"{self.node}/{self.kind.value}"


@dataclass(frozen=True)
class TargetFailure:
    target: Target
    error: str


@dataclass
class FanOutResult(Generic[T]):
    """Outcome of one fan-out: every target lands in exactly one list."""

    succeeded: List[T] = field(default_factory=list)
    failed: List[TargetFailure] = field(default_factory=list)

    @property
    def target_count(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def all_failed(self) -> bool:
        return bool(self.failed) and not self.succeeded

    def merged(self) -> list:
        """Flatten ``succeeded`` when each target answered with a list."""
        return list(chain.from_iterable(self.succeeded))

    def extend(self, other: "FanOutResult") -> "FanOutResult":
        """Fold another independent fan-out into this one."""
        self.succeeded.extend(other.succeeded)
        self.failed.extend(other.failed)
        return self


class FanOutAggregator:
    """Run ``fetch(target)`` for every target on a bounded thread pool.

    Arguments:
    - max_workers:    upper bound on concurrent requests against the API
    - target_timeout: seconds one target may take; a target still running
                      when the overall deadline passes is recorded as failed
                      exactly like a network error
    """

    def __init__(self, max_workers: int = 4, target_timeout: Optional[float] = None):
        self.max_workers = max(int(max_workers), 1)
        self.target_timeout = target_timeout

    def query(self, targets: Sequence[Target], fetch: Callable[[Target], T]) -> FanOutResult:
        ordered = sorted(targets, key=Target.sort_key)
        if not ordered:
            return FanOutResult()

        workers = min(self.max_workers, len(ordered))
        deadline = None
        if self.target_timeout is not None:
            # Targets beyond the pool size queue behind earlier ones.
            deadline = self.target_timeout * math.ceil(len(ordered) / workers)

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fanout")
        futures = [executor.submit(fetch, target) for target in ordered]
        _, pending = wait(futures, timeout=deadline)
        executor.shutdown(wait=not pending, cancel_futures=True)

        result = FanOutResult()
        for target, future in zip(ordered, futures):
            if future in pending:
                error = f"timed out after {self.target_timeout}s"
            else:
                try:
                    result.succeeded.append(future.result())
                    continue
                except Exception as exc:
                    error = str(exc) or exc.__class__.__name__
            logger.warning("Target %s failed: %s", target, error)
            result.failed.append(TargetFailure(target=target, error=error))

        logger.debug(
            "Fan-out over %d targets: %d succeeded, %d failed",
            len(ordered), len(result.succeeded), len(result.failed),
        )
        return result
