"""AWS client factories with dependency injection.

Provides typed client factories that can be injected into the EC2 and ELB
services, and binds those services to the actuator's collaborator
protocols.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.config import Config
from injector import Binder, Module, provider, singleton

from machinist.protocols import InstanceService, LoadBalancerService

from .config import AWS
from .ec2 import EC2InstanceService
from .elb import ELBService

if TYPE_CHECKING:
    from types_aiobotocore_ec2 import EC2Client
    from types_aiobotocore_elb import ElasticLoadBalancingClient

# =============================================================================
# Client Type
# =============================================================================

type Client[T] = Callable[[], AbstractAsyncContextManager[T]]
"""Factory that returns an async context manager for a client."""

# =============================================================================
# Wrapper Classes for DI (each needs a unique type)
# =============================================================================


class EC2ClientFactory:
    """Wrapper for EC2 client factory."""

    def __init__(self, factory: Client[EC2Client]) -> None:
        self._factory = factory

    def __call__(self) -> AbstractAsyncContextManager[EC2Client]:
        return self._factory()


class ELBClientFactory:
    """Wrapper for classic ELB client factory."""

    def __init__(self, factory: Client[ElasticLoadBalancingClient]) -> None:
        self._factory = factory

    def __call__(self) -> AbstractAsyncContextManager[ElasticLoadBalancingClient]:
        return self._factory()


def _client_factory(session: aioboto3.Session, service: str, config: AWS) -> Client[Any]:
    botocore_config = Config(
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
        retries={"max_attempts": 1, "mode": "standard"},
    )

    @asynccontextmanager
    async def factory() -> AsyncIterator[Any]:
        async with session.client(service, region_name=config.region, config=botocore_config) as client:  # type: ignore[reportGeneralTypeIssues]
            yield client

    return factory


# =============================================================================
# AWS Module
# =============================================================================


class AWSModule(Module):
    """DI module that provides AWS client factories and services.

    Usage:
        >>> from injector import Injector
        >>> from machinist.providers.aws import AWSModule, AWS
        >>>
        >>> injector = Injector([AWSModule(AWS(region="us-east-1"))])
        >>> instances = injector.get(InstanceService)
    """

    def __init__(self, config: AWS | None = None) -> None:
        self._config = config or AWS()

    def configure(self, binder: Binder) -> None:
        binder.bind(AWS, to=self._config)

    @singleton
    @provider
    def provide_session(self) -> aioboto3.Session:
        """Provide singleton aioboto3 session."""
        return aioboto3.Session()

    @singleton
    @provider
    def provide_ec2(self, session: aioboto3.Session, config: AWS) -> EC2ClientFactory:
        return EC2ClientFactory(_client_factory(session, "ec2", config))

    @singleton
    @provider
    def provide_elb(self, session: aioboto3.Session, config: AWS) -> ELBClientFactory:
        return ELBClientFactory(_client_factory(session, "elb", config))

    @singleton
    @provider
    def provide_instance_service(self, ec2: EC2ClientFactory, config: AWS) -> InstanceService:
        return EC2InstanceService(ec2, config)

    @singleton
    @provider
    def provide_load_balancer_service(self, elb: ELBClientFactory, config: AWS) -> LoadBalancerService:
        return ELBService(elb, config)


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "AWSModule",
    "Client",
    "EC2ClientFactory",
    "ELBClientFactory",
]
