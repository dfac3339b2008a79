"""Reconcilers for mutable instance attachments.

Load-balancer membership, security groups and tags are the only instance
attributes the actuator changes after launch. Security groups and tags
remember what machinist applied last in machine annotations, so entries
added to the instance by someone else are left alone.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from machinist import wire
from machinist.constants import LAST_APPLIED_SECURITY_GROUPS_ANNOTATION, LAST_APPLIED_TAGS_ANNOTATION
from machinist.core.exceptions import provider_call
from machinist.types import MachineRole

if TYPE_CHECKING:
    from machinist.protocols import InstanceService, LoadBalancerService
    from machinist.scope import MachineScope
    from machinist.types import Instance


# =============================================================================
# Load balancer
# =============================================================================


async def reconcile_lb_attachment(
    scope: MachineScope,
    instance: Instance,
    load_balancers: LoadBalancerService,
) -> bool:
    """Register control-plane instances with the API server load balancer.

    Returns whether a registration was issued. Workers are skipped.
    """
    if scope.role is not MachineRole.CONTROL_PLANE:
        return False

    with provider_call("register control plane instance with load balancer", instance.id):
        await load_balancers.register_instance(scope.cluster, instance.id)
    return True


# =============================================================================
# Security groups
# =============================================================================


def security_groups_changed(
    last_applied: Iterable[str],
    core: Iterable[str],
    additional: Iterable[str],
    existing: Iterable[str],
) -> tuple[bool, frozenset[str]]:
    """Compute the security groups an instance should carry.

    Core and additional groups are required. Groups machinist applied before
    but no longer wants are dropped. Any other group already on the instance
    is kept.

    Returns:
        Tuple of (changed, desired group ids).
    """
    keep: dict[str, bool] = {}
    for group in (*core, *additional):
        keep[group] = True
    for group in last_applied:
        keep.setdefault(group, False)

    existing = frozenset(existing)
    for group in existing:
        keep.setdefault(group, True)

    desired = frozenset(g for g, wanted in keep.items() if wanted)
    return desired != existing, desired


async def ensure_security_groups(
    scope: MachineScope,
    instance_id: str,
    instances: InstanceService,
    existing: frozenset[str],
) -> bool:
    last_applied = wire.read_last_applied(scope.machine, LAST_APPLIED_SECURITY_GROUPS_ANNOTATION)
    additional = scope.config.additional_security_groups

    with provider_call("get core security groups", scope.machine.key):
        core = await instances.core_security_groups(scope)

    changed, desired = security_groups_changed(last_applied, core, additional, existing)
    if not changed:
        return False

    scope.log.info("Updating security groups on {instance}: {groups}", instance=instance_id, groups=sorted(desired))
    with provider_call("apply security groups", instance_id):
        await instances.update_security_groups(instance_id, desired)

    wire.write_last_applied(
        scope.machine,
        LAST_APPLIED_SECURITY_GROUPS_ANNOTATION,
        {group: {} for group in additional},
    )
    return True


# =============================================================================
# Tags
# =============================================================================


@dataclass(frozen=True, slots=True)
class TagDiff:
    create: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    remove: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def changed(self) -> bool:
        return bool(self.create or self.remove)


def tags_changed(last_applied: Mapping[str, str], desired: Mapping[str, str]) -> TagDiff:
    """Diff desired tags against the tags machinist applied last time.

    Tags that were applied before but are no longer desired are removed;
    new or changed tags are (re)created.
    """
    remove = {k: v for k, v in last_applied.items() if k not in desired}
    create = {k: v for k, v in desired.items() if last_applied.get(k) != v}
    return TagDiff(create=MappingProxyType(create), remove=MappingProxyType(remove))


async def ensure_tags(
    scope: MachineScope,
    instance_id: str,
    instances: InstanceService,
) -> bool:
    last_applied = {
        str(k): str(v)
        for k, v in wire.read_last_applied(scope.machine, LAST_APPLIED_TAGS_ANNOTATION).items()
    }
    desired = dict(scope.config.additional_tags)

    diff = tags_changed(last_applied, desired)
    if not diff.changed:
        return False

    scope.log.info(
        "Updating tags on {instance}: +{created} -{removed}",
        instance=instance_id, created=sorted(diff.create), removed=sorted(diff.remove),
    )
    with provider_call("ensure tags", instance_id):
        await instances.update_tags(instance_id, diff.create, diff.remove)

    wire.write_last_applied(scope.machine, LAST_APPLIED_TAGS_ANNOTATION, desired)
    return True
