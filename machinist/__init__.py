"""machinist - reconcile cluster Machines against cloud compute instances.

Example:

    from machinist import Actuator, ActuatorConfig, RequeueAfterError

    actuator = Actuator(
        instances=ec2_service,
        load_balancers=elb_service,
        machines=machine_client,
        locker=locker,
        accessor=accessor,
        tokens=token_issuer,
        config=ActuatorConfig(request_timeout=60),
    )

    try:
        await actuator.create(cluster, machine)
    except RequeueAfterError as e:
        queue.add_after(key, e.requeue_after)
"""

from machinist.actuator import Actuator
from machinist.config import ActuatorConfig, resolve_actuator_config, resolve_log_config
from machinist.constants import InstanceState
from machinist.core.exceptions import (
    ConfigurationError,
    ImmutableFieldError,
    InstanceIdConflictError,
    InstanceNotFoundError,
    MachinistError,
    ProviderError,
    ReconcileTimeoutError,
    RequeueAfterError,
)
from machinist.join import JoinDecision, control_plane_machines, decide_join
from machinist.locker import ConfigStoreInitLocker, InMemoryConfigStore
from machinist.logging import LogConfig, setup_logging, teardown_logging
from machinist.module import MachinistModule
from machinist.scope import MachineScope
from machinist.types import (
    Cluster,
    ClusterNetwork,
    ClusterPhase,
    Instance,
    Machine,
    MachineProviderSpec,
    MachineProviderStatus,
    MachineRole,
    SecurityGroupRole,
)
from machinist.validation import outdated_fields

__all__ = [
    "Actuator",
    "ActuatorConfig",
    "Cluster",
    "ClusterNetwork",
    "ClusterPhase",
    "ConfigStoreInitLocker",
    "ConfigurationError",
    "ImmutableFieldError",
    "InMemoryConfigStore",
    "Instance",
    "InstanceIdConflictError",
    "InstanceNotFoundError",
    "InstanceState",
    "JoinDecision",
    "LogConfig",
    "Machine",
    "MachineProviderSpec",
    "MachineProviderStatus",
    "MachineRole",
    "MachineScope",
    "MachinistError",
    "MachinistModule",
    "ProviderError",
    "ReconcileTimeoutError",
    "RequeueAfterError",
    "SecurityGroupRole",
    "control_plane_machines",
    "decide_join",
    "outdated_fields",
    "resolve_actuator_config",
    "resolve_log_config",
    "setup_logging",
    "teardown_logging",
]
