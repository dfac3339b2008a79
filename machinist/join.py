"""Join-or-init decision for a machine's control-plane bootstrap."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from machinist import wire
from machinist.core.exceptions import RequeueAfterError
from machinist.types import ClusterPhase, MachineRole

if TYPE_CHECKING:
    from machinist.config import ActuatorConfig
    from machinist.protocols import ControlPlaneInitLocker
    from machinist.types import Cluster, Machine


@dataclass(frozen=True, slots=True)
class JoinDecision:
    """Outcome of the join/init decision.

    ``join`` is False only for the single reconciliation that won the init
    lock. A decision with ``requeue_after`` set means the machine cannot
    proceed yet.
    """

    join: bool
    requeue_after: float | None = None
    reason: str = ""

    @property
    def init(self) -> bool:
        return not self.join and self.requeue_after is None

    def raise_for_requeue(self) -> None:
        if self.requeue_after is not None:
            raise RequeueAfterError(self.requeue_after, self.reason)


async def decide_join(
    cluster: Cluster,
    machine: Machine,
    locker: ControlPlaneInitLocker,
    config: ActuatorConfig,
) -> JoinDecision:
    """Decide whether ``machine`` joins an existing control plane or inits one.

    Re-evaluated from the cluster and machine on every call; the decision is
    never cached.
    """
    if wire.cluster_phase(cluster) is ClusterPhase.CONTROL_PLANE_READY:
        return JoinDecision(join=True)

    if wire.machine_role(machine) is not MachineRole.CONTROL_PLANE:
        return JoinDecision(
            join=True,
            requeue_after=config.control_plane_existence_requeue,
            reason="no control plane exists yet",
        )

    if await locker.acquire(cluster):
        return JoinDecision(join=False)

    return JoinDecision(
        join=True,
        requeue_after=config.control_plane_ready_requeue,
        reason="control plane init lock is held by another machine",
    )


def control_plane_machines(machines: Iterable[Machine]) -> list[Machine]:
    """Non-deleted machines carrying the control-plane role."""
    return [
        m for m in machines
        if not m.deleted and wire.machine_role(m) is MachineRole.CONTROL_PLANE
    ]
