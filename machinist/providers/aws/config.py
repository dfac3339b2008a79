"""AWS adapter configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS adapter configuration.

    Example:
        >>> from machinist.providers.aws import AWS
        >>> config = AWS(region="us-west-2")

    Args:
        region: AWS region for instances and load balancers. Default: us-east-1
        default_ami: AMI used when a machine spec does not name one.
        connect_timeout: Seconds to wait for a connection to the AWS API.
        read_timeout: Seconds to wait for an AWS API response.
        max_attempts: Attempts for throttled API calls before giving up.
    """

    region: str = "us-east-1"
    default_ami: str | None = None
    connect_timeout: int = 10
    read_timeout: int = 30
    max_attempts: int = 5
