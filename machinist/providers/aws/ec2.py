"""EC2-backed InstanceService."""

from __future__ import annotations

import base64
import shlex
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError, ConnectTimeoutError, ReadTimeoutError
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from machinist.constants import OWNED_TAG_VALUE, InstanceState, MachinistTag
from machinist.core.exceptions import ConfigurationError, InstanceNotFoundError
from machinist.types import Instance, MachineRole, SecurityGroupRole

if TYPE_CHECKING:
    from machinist.scope import MachineScope

    from .clients import EC2ClientFactory
    from .config import AWS

log = logger.bind(component="aws-ec2")

_THROTTLE_CODES = frozenset({"RequestLimitExceeded", "Throttling", "ThrottlingException"})
_NOT_FOUND_CODES = frozenset({"InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"})
_ROOT_DEVICE_NAME = "/dev/sda1"


def _error_code(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "")
    return ""


def _is_throttled(exc: BaseException) -> bool:
    return _error_code(exc) in _THROTTLE_CODES


def render_user_data(scope: MachineScope, bootstrap_token: str) -> str:
    mode = "join" if bootstrap_token else "init"
    env = {
        "CLUSTER_NAME": scope.cluster_name,
        "MACHINE_NAME": scope.name,
        "MACHINE_ROLE": str(scope.role),
        "BOOTSTRAP_MODE": mode,
        "BOOTSTRAP_TOKEN": bootstrap_token,
    }
    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        "mkdir -p /etc/machinist",
        "cat > /etc/machinist/bootstrap.env <<'EOF'",
        *(f"{key}={shlex.quote(value)}" for key, value in env.items()),
        "EOF",
        "chmod 600 /etc/machinist/bootstrap.env",
    ]
    return "\n".join(lines) + "\n"


def _profile_name(raw: Mapping[str, Any]) -> str:
    arn = raw.get("IamInstanceProfile", {}).get("Arn", "")
    return arn.rsplit("/", 1)[-1] if arn else ""


def _root_volume_id(raw: Mapping[str, Any]) -> str | None:
    root = raw.get("RootDeviceName")
    for mapping in raw.get("BlockDeviceMappings", []):
        if mapping.get("DeviceName") == root:
            return mapping.get("Ebs", {}).get("VolumeId")
    return None


def parse_instance(raw: Mapping[str, Any], root_device_size: int = 0) -> Instance:
    """Build an Instance from a describe_instances/run_instances entry."""
    return Instance(
        id=raw["InstanceId"],
        type=raw.get("InstanceType", ""),
        state=InstanceState(raw.get("State", {}).get("Name", InstanceState.PENDING)),
        iam_profile=_profile_name(raw),
        key_name=raw.get("KeyName"),
        root_device_size=root_device_size,
        subnet_id=raw.get("SubnetId", ""),
        public_ip=raw.get("PublicIpAddress"),
        private_ip=raw.get("PrivateIpAddress"),
        tags=MappingProxyType({t["Key"]: t["Value"] for t in raw.get("Tags", [])}),
        security_group_ids=frozenset(g["GroupId"] for g in raw.get("SecurityGroups", [])),
    )


class EC2InstanceService:
    """InstanceService implementation using the EC2 API via aioboto3."""

    def __init__(self, ec2: EC2ClientFactory, config: AWS) -> None:
        self.ec2 = ec2
        self.config = config

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[Any]:
        try:
            async with self.ec2() as client:
                yield client
        except (ConnectTimeoutError, ReadTimeoutError) as e:
            raise TimeoutError(f"EC2 request timed out: {e}") from e

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    async def create_or_get(self, scope: MachineScope, bootstrap_token: str) -> Instance:
        if recorded := scope.status.instance_id:
            instance = await self.instance_if_exists(recorded)
            if instance is None:
                raise InstanceNotFoundError(scope.machine.key, recorded)
            return instance

        # No ClientToken: EC2 honours a token after termination and machine names get reused.
        instance = await self.instance_by_tags(scope)
        if instance is not None:
            return instance

        return await self._create_instance(scope, bootstrap_token)

    async def instance_if_exists(self, instance_id: str | None) -> Instance | None:
        if not instance_id:
            return None

        async with self._client() as ec2:
            try:
                response = await self._describe(ec2, InstanceIds=[instance_id])
            except ClientError as e:
                if _error_code(e) in _NOT_FOUND_CODES:
                    log.debug("Instance {id} not found", id=instance_id)
                    return None
                raise
            return await self._first(ec2, response)

    async def instance_by_tags(self, scope: MachineScope) -> Instance | None:
        filters = [
            {"Name": f"tag:{MachinistTag.NAME}", "Values": [scope.name]},
            {"Name": "tag-key", "Values": [f"{MachinistTag.CLUSTER_PREFIX}{scope.cluster_name}"]},
            {"Name": "instance-state-name", "Values": [str(InstanceState.PENDING), str(InstanceState.RUNNING)]},
        ]
        if scope.cluster.network.vpc_id:
            filters.append({"Name": "vpc-id", "Values": [scope.cluster.network.vpc_id]})

        async with self._client() as ec2:
            response = await self._describe(ec2, Filters=filters)
            return await self._first(ec2, response)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def terminate(self, instance_id: str) -> None:
        async with self._client() as ec2:
            await self._call(ec2.terminate_instances, InstanceIds=[instance_id])
        log.info("Terminated instance {id}", id=instance_id)

    async def _create_instance(self, scope: MachineScope, bootstrap_token: str) -> Instance:
        spec = scope.config
        network = scope.cluster.network

        ami = spec.ami or self.config.default_ami
        if not ami:
            raise ConfigurationError(f"no AMI configured for machine {scope.machine.key}")

        subnet_id = spec.subnet_id or next(iter(network.private_subnet_ids), None)
        if not subnet_id:
            raise ConfigurationError(f"no subnet available for machine {scope.machine.key}")

        group_ids = sorted(await self.core_security_groups(scope) | set(spec.additional_security_groups))
        # Lookup tags go last so additional tags cannot shadow them.
        tags = {
            **spec.additional_tags,
            MachinistTag.NAME: scope.name,
            f"{MachinistTag.CLUSTER_PREFIX}{scope.cluster_name}": OWNED_TAG_VALUE,
            MachinistTag.ROLE: str(scope.role),
        }

        request: dict[str, Any] = {
            "ImageId": ami,
            "InstanceType": spec.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "UserData": base64.b64encode(render_user_data(scope, bootstrap_token).encode()).decode(),
            "TagSpecifications": [
                {
                    "ResourceType": "instance",
                    "Tags": [{"Key": str(k), "Value": v} for k, v in tags.items()],
                }
            ],
        }

        if spec.public_ip is not None:
            request["NetworkInterfaces"] = [
                {
                    "DeviceIndex": 0,
                    "SubnetId": subnet_id,
                    "Groups": group_ids,
                    "AssociatePublicIpAddress": spec.public_ip,
                }
            ]
        else:
            request["SubnetId"] = subnet_id
            request["SecurityGroupIds"] = group_ids

        if spec.key_name:
            request["KeyName"] = spec.key_name
        if spec.iam_instance_profile:
            request["IamInstanceProfile"] = {"Name": spec.iam_instance_profile}
        if spec.root_device_size:
            request["BlockDeviceMappings"] = [
                {
                    "DeviceName": _ROOT_DEVICE_NAME,
                    "Ebs": {"VolumeSize": spec.root_device_size, "DeleteOnTermination": True},
                }
            ]

        scope.log.info("Launching {type} instance in {subnet}", type=spec.instance_type, subnet=subnet_id)
        async with self._client() as ec2:
            response = await self._call(ec2.run_instances, **request)

        raw = response["Instances"][0]
        instance = parse_instance(raw, root_device_size=spec.root_device_size or 0)
        scope.log.info("Launched instance {id}", id=instance.id)
        return instance

    # -------------------------------------------------------------------------
    # Security groups and tags
    # -------------------------------------------------------------------------

    async def security_groups(self, instance_id: str) -> frozenset[str]:
        instance = await self.instance_if_exists(instance_id)
        if instance is None:
            raise LookupError(f"instance {instance_id} not found")
        return instance.security_group_ids

    async def core_security_groups(self, scope: MachineScope) -> frozenset[str]:
        roles = [SecurityGroupRole.NODE, SecurityGroupRole.LB]
        if scope.role is MachineRole.CONTROL_PLANE:
            roles.append(SecurityGroupRole.CONTROL_PLANE)

        groups = scope.cluster.network.security_groups
        missing = [r for r in roles if r not in groups]
        if missing:
            raise ConfigurationError(
                f"cluster {scope.cluster.key} has no security group for roles: "
                f"{', '.join(str(r) for r in missing)}"
            )
        return frozenset(groups[r] for r in roles)

    async def update_security_groups(self, instance_id: str, group_ids: frozenset[str]) -> None:
        async with self._client() as ec2:
            await self._call(ec2.modify_instance_attribute, InstanceId=instance_id, Groups=sorted(group_ids))

    async def update_tags(
        self,
        instance_id: str,
        create: Mapping[str, str],
        remove: Mapping[str, str],
    ) -> None:
        async with self._client() as ec2:
            if create:
                await self._call(
                    ec2.create_tags,
                    Resources=[instance_id],
                    Tags=[{"Key": k, "Value": v} for k, v in create.items()],
                )
            if remove:
                await self._call(
                    ec2.delete_tags,
                    Resources=[instance_id],
                    Tags=[{"Key": k, "Value": v} for k, v in remove.items()],
                )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _call(self, method: Any, **kwargs: Any) -> Any:
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_throttled),
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )
        return await retrying(method, **kwargs)

    async def _describe(self, ec2: Any, **kwargs: Any) -> Any:
        return await self._call(ec2.describe_instances, **kwargs)

    async def _first(self, ec2: Any, response: Mapping[str, Any]) -> Instance | None:
        for reservation in response.get("Reservations", []):
            for raw in reservation.get("Instances", []):
                return parse_instance(raw, root_device_size=await self._root_device_size(ec2, raw))
        return None

    async def _root_device_size(self, ec2: Any, raw: Mapping[str, Any]) -> int:
        volume_id = _root_volume_id(raw)
        if volume_id is None:
            return 0
        response = await self._call(ec2.describe_volumes, VolumeIds=[volume_id])
        volumes = response.get("Volumes", [])
        return volumes[0].get("Size", 0) if volumes else 0
