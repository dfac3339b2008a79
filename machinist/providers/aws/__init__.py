"""AWS adapters for machinist.

Example:
    from injector import Injector
    from machinist.providers.aws import AWS, AWSModule

    injector = Injector([AWSModule(AWS(region="us-east-1"))])
"""

from machinist.providers.aws.clients import AWSModule, EC2ClientFactory, ELBClientFactory
from machinist.providers.aws.config import AWS
from machinist.providers.aws.ec2 import EC2InstanceService
from machinist.providers.aws.elb import ELBService

__all__ = [
    "AWS",
    "AWSModule",
    "EC2ClientFactory",
    "EC2InstanceService",
    "ELBClientFactory",
    "ELBService",
]
