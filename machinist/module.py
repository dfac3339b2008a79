"""Central DI module for machinist.

Provides the actuator and its cluster-side defaults. Cloud services come
from a provider module (e.g. ``AWSModule``); the cluster store client,
control-plane accessor and token issuer are bound by the host process.

Usage:
    injector = Injector([
        MachinistModule(ActuatorConfig()),
        AWSModule(AWS(region="us-east-1")),
        HostModule(),  # binds MachineClient, ClusterAccessor, TokenIssuer
    ])
    actuator = injector.get(Actuator)
"""

from __future__ import annotations

from injector import Binder, Module, provider, singleton

from .actuator import Actuator
from .config import ActuatorConfig
from .locker import ConfigStoreInitLocker, InMemoryConfigStore
from .protocols import (
    ClusterAccessor,
    ConfigStore,
    ControlPlaneInitLocker,
    InstanceService,
    LoadBalancerService,
    MachineClient,
    TokenIssuer,
)


class MachinistModule(Module):
    def __init__(self, config: ActuatorConfig | None = None) -> None:
        self._config = config or ActuatorConfig()

    def configure(self, binder: Binder) -> None:
        binder.bind(ActuatorConfig, to=self._config)

    @singleton
    @provider
    def provide_config_store(self) -> ConfigStore:
        return InMemoryConfigStore()

    @singleton
    @provider
    def provide_locker(self, store: ConfigStore) -> ControlPlaneInitLocker:
        return ConfigStoreInitLocker(store)

    @singleton
    @provider
    def provide_actuator(
        self,
        instances: InstanceService,
        load_balancers: LoadBalancerService,
        machines: MachineClient,
        locker: ControlPlaneInitLocker,
        accessor: ClusterAccessor,
        tokens: TokenIssuer,
        config: ActuatorConfig,
    ) -> Actuator:
        return Actuator(
            instances=instances,
            load_balancers=load_balancers,
            machines=machines,
            locker=locker,
            accessor=accessor,
            tokens=tokens,
            config=config,
        )


__all__ = [
    "MachinistModule",
]
