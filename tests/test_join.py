from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from machinist import wire
from machinist.config import ActuatorConfig
from machinist.core.exceptions import RequeueAfterError
from machinist.join import JoinDecision, control_plane_machines, decide_join
from machinist.locker import ConfigStoreInitLocker, InMemoryConfigStore
from machinist.types import Cluster, ClusterPhase, MachineRole


class CountingLocker:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls = 0

    async def acquire(self, cluster: Cluster) -> bool:
        self.calls += 1
        return self.result


class TestJoinDecision:
    def test_init_only_without_requeue(self) -> None:
        assert JoinDecision(join=False).init
        assert not JoinDecision(join=True).init
        assert not JoinDecision(join=True, requeue_after=5.0).init

    def test_raise_for_requeue(self) -> None:
        JoinDecision(join=True).raise_for_requeue()

        with pytest.raises(RequeueAfterError) as exc_info:
            JoinDecision(join=True, requeue_after=7.5, reason="waiting").raise_for_requeue()

        assert exc_info.value.requeue_after == 7.5
        assert exc_info.value.reason == "waiting"


class TestDecideJoin:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", list(MachineRole))
    async def test_control_plane_ready_always_joins(self, make_cluster, make_machine, config, role) -> None:
        locker = CountingLocker()
        cluster = make_cluster(ClusterPhase.CONTROL_PLANE_READY)
        machine = make_machine(role=role)

        decision = await decide_join(cluster, machine, locker, config)

        assert decision == JoinDecision(join=True)
        assert locker.calls == 0

    @pytest.mark.asyncio
    async def test_worker_waits_for_control_plane(self, make_cluster, make_machine, config) -> None:
        locker = CountingLocker()
        cluster = make_cluster(ClusterPhase.INFRASTRUCTURE_READY)

        decision = await decide_join(cluster, make_machine(), locker, config)

        assert decision.join
        assert decision.requeue_after == config.control_plane_existence_requeue
        assert locker.calls == 0

    @pytest.mark.asyncio
    async def test_control_plane_machine_wins_lock(self, make_cluster, make_machine, config) -> None:
        locker = CountingLocker(result=True)
        cluster = make_cluster(ClusterPhase.INFRASTRUCTURE_READY)
        machine = make_machine("cp-0", role=MachineRole.CONTROL_PLANE)

        decision = await decide_join(cluster, machine, locker, config)

        assert decision.init
        assert locker.calls == 1

    @pytest.mark.asyncio
    async def test_control_plane_machine_loses_lock(self, make_cluster, make_machine, config) -> None:
        locker = CountingLocker(result=False)
        cluster = make_cluster(ClusterPhase.INFRASTRUCTURE_READY)
        machine = make_machine("cp-1", role=MachineRole.CONTROL_PLANE)

        decision = await decide_join(cluster, machine, locker, config)

        assert decision.join
        assert decision.requeue_after == config.control_plane_ready_requeue

    @pytest.mark.asyncio
    async def test_exactly_one_init_under_contention(self, make_cluster, make_machine, config) -> None:
        locker = ConfigStoreInitLocker(InMemoryConfigStore())
        cluster = make_cluster(ClusterPhase.INFRASTRUCTURE_READY)
        machines = [make_machine(f"cp-{i}", role=MachineRole.CONTROL_PLANE) for i in range(8)]

        decisions = await asyncio.gather(
            *(decide_join(cluster, m, locker, config) for m in machines)
        )

        assert sum(d.init for d in decisions) == 1
        losers = [d for d in decisions if not d.init]
        assert all(d.join and d.requeue_after == config.control_plane_ready_requeue for d in losers)

    @pytest.mark.asyncio
    async def test_decision_follows_cluster_phase(self, make_cluster, make_machine) -> None:
        config = ActuatorConfig()
        locker = ConfigStoreInitLocker(InMemoryConfigStore())
        cluster = make_cluster(ClusterPhase.INFRASTRUCTURE_READY)
        first = make_machine("cp-0", role=MachineRole.CONTROL_PLANE)
        second = make_machine("cp-1", role=MachineRole.CONTROL_PLANE)

        assert (await decide_join(cluster, first, locker, config)).init
        assert (await decide_join(cluster, second, locker, config)).requeue_after is not None

        wire.mark_cluster_phase(cluster, ClusterPhase.CONTROL_PLANE_READY)

        assert await decide_join(cluster, second, locker, config) == JoinDecision(join=True)


def test_control_plane_machines_filters_workers_and_deleted(make_machine) -> None:
    live = make_machine("cp-0", role=MachineRole.CONTROL_PLANE)
    deleted = make_machine("cp-1", role=MachineRole.CONTROL_PLANE)
    deleted.deletion_timestamp = datetime.now(UTC)
    worker = make_machine("worker-0")

    assert control_plane_machines([live, deleted, worker]) == [live]
    assert control_plane_machines([]) == []
