"""Classic ELB-backed LoadBalancerService."""

from __future__ import annotations

from typing import TYPE_CHECKING

from botocore.exceptions import ClientError
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

if TYPE_CHECKING:
    from machinist.types import Cluster

    from .clients import ELBClientFactory
    from .config import AWS

log = logger.bind(component="aws-elb")

API_SERVER_ELB_SUFFIX = "apiserver"


def _is_throttled(exc: BaseException) -> bool:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "") in {"Throttling", "ThrottlingException"}
    return False


def api_server_elb_name(cluster: Cluster) -> str:
    return cluster.network.api_server_elb_name or f"{cluster.name}-{API_SERVER_ELB_SUFFIX}"


class ELBService:
    def __init__(self, elb: ELBClientFactory, config: AWS) -> None:
        self.elb = elb
        self.config = config

    async def register_instance(self, cluster: Cluster, instance_id: str) -> None:
        """Register an instance with the cluster's API server load balancer.

        Classic ELB registration is idempotent, so an already-registered
        instance is not an error.
        """
        name = api_server_elb_name(cluster)
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_throttled),
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )
        async with self.elb() as elb:
            await retrying(
                elb.register_instances_with_load_balancer,
                LoadBalancerName=name,
                Instances=[{"InstanceId": instance_id}],
            )
        log.debug("Registered {id} with load balancer {name}", id=instance_id, name=name)
