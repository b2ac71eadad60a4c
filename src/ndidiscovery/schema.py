"""
Schema definitions for NDI discovery server deployments.

This module provides the configuration class describing the parameters an
operator supplies when deploying one NDI discovery server per subnet.
"""

import ipaddress
import os
import re
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._unpack_tags import RESERVED_TAG_KEYS, unpack_tags

env_prefix = "NDI_DISCOVERY_"

KNOWN_INSTANCE_TYPES = ("t3.micro", "t3.medium")
MANUAL_INSTANCE_TYPE = "other"

MIN_VOLUME_SIZE = 8

DEFAULT_AMI_PARAMETER = (
    "/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-x86_64"
)

NAME_PATTERN = r"^[a-zA-Z0-9_-]{1,255}$"
DNS_NAME_PATTERN = r"^([a-zA-Z0-9_\-\.]+)\.([a-zA-Z]{2,10})$"
SUBNET_ID_PATTERN = r"^subnet-[0-9a-zA-Z]+$"

# Graviton families: t4g, m7g, c6gn, x2gd, ...
_ARM_FAMILY = re.compile(r"^[a-z]+\d+[a-z]*g[a-z]*$")


def is_arm_instance_type(instance_type: str) -> bool:
    return bool(_ARM_FAMILY.match(instance_type.split(".", 1)[0]))


class _DiscoveryDeploymentSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", env_prefix=env_prefix
    )
    region: Optional[str] = None
    account: Optional[str] = None
    instance_name: Optional[str] = None
    instance_type: Optional[str] = None
    instance_type_manual: Optional[str] = None
    volume_size: Optional[int] = None
    vpc_id: Optional[str] = None
    vpc_cidr: Optional[str] = None
    subnet_ids: Optional[str] = None  # in the format "subnet-a,subnet-b"
    ami_id: Optional[str] = None
    private_dns_name: Optional[str] = None
    owner: Optional[str] = None
    extra_tags_str: Optional[str] = None  # in the format "key1=value1;key2=value2"


def unpack_subnet_ids(subnet_ids: str | None) -> Tuple[str, ...]:
    if not subnet_ids:
        return ()
    return tuple(s.strip() for s in subnet_ids.split(",") if s.strip())


class DiscoveryDeploymentConfig(BaseModel, frozen=True):
    """
    Configuration for an NDI discovery server deployment.

    Attributes:
        region: AWS region
        account: AWS account (optional, the CDK default account otherwise)
        instance_name: Prefix of the Name tag of every instance
        instance_type: One of the known instance types, or "other" to use
            instance_type_manual. The discovery server binary is x86_64,
            so ARM (Graviton) types such as t4g.micro are rejected
        instance_type_manual: Instance type used when instance_type is not
            one of the known types
        volume_size: Size of the root volume in GB, at least 8
        vpc_id: VPC the servers and the private hosted zone belong to
        vpc_cidr: CIDR range of the VPC, the only range allowed to talk NDI
        subnet_ids: Subnets to deploy to, one server per subnet
        ami_id: AMI ID, or the SSM parameter holding it
            (optional, defaults to the latest Amazon Linux 2023)
        private_dns_name: Domain of the private hosted zone
        owner: Value of the Owner tag
        extra_tags: tuple of 2-tuples of additional tags
    """

    region: str
    account: Optional[str] = None
    instance_name: str = Field(default="ndi-discovery", pattern=NAME_PATTERN)
    instance_type: str = "t3.micro"
    instance_type_manual: Optional[str] = None
    volume_size: int = Field(default=MIN_VOLUME_SIZE, ge=MIN_VOLUME_SIZE)
    vpc_id: str = Field(pattern=r"^vpc-[0-9a-zA-Z]+$")
    vpc_cidr: str
    subnet_ids: Tuple[str, ...] = Field(min_length=1)
    ami_id: str = DEFAULT_AMI_PARAMETER
    private_dns_name: str = Field(default="ndi.private", pattern=DNS_NAME_PATTERN)
    owner: str = Field(pattern=NAME_PATTERN)
    extra_tags: Tuple[Tuple[str, str], ...] = ()

    @field_validator("vpc_cidr")
    @classmethod
    def _check_cidr(cls, value: str) -> str:
        if "/" not in value:
            raise ValueError(
                f"VPC CIDR '{value}' must be a valid IP CIDR range of the form x.x.x.x/x"
            )
        try:
            network = ipaddress.IPv4Network(value, strict=False)
        except ValueError:
            raise ValueError(
                f"VPC CIDR '{value}' must be a valid IP CIDR range of the form x.x.x.x/x"
            )
        if network.prefixlen < 1:
            raise ValueError(f"VPC CIDR '{value}' prefix must be between 1 and 32")
        return value

    @field_validator("subnet_ids")
    @classmethod
    def _check_subnet_ids(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        seen = set()
        for subnet_id in value:
            if not re.match(SUBNET_ID_PATTERN, subnet_id):
                raise ValueError(f"'{subnet_id}' is not a subnet ID")
            if subnet_id in seen:
                raise ValueError(f"Subnet '{subnet_id}' is listed more than once")
            seen.add(subnet_id)
        return value

    @field_validator("extra_tags")
    @classmethod
    def _check_extra_tags(
        cls, value: Tuple[Tuple[str, str], ...]
    ) -> Tuple[Tuple[str, str], ...]:
        for key, _ in value:
            if key in RESERVED_TAG_KEYS:
                raise ValueError(f"Extra tags must not override the '{key}' tag")
        return value

    @field_validator("ami_id")
    @classmethod
    def _check_ami_id(cls, value: str) -> str:
        if not (value.startswith("ami-") or value.startswith("/")):
            raise ValueError(
                f"AMI '{value}' must be an AMI ID or an SSM parameter path"
            )
        return value

    @model_validator(mode="after")
    def _check_instance_type(self) -> "DiscoveryDeploymentConfig":
        if (
            self.instance_type not in KNOWN_INSTANCE_TYPES
            and not self.instance_type_manual
            and not is_arm_instance_type(self.instance_type)
        ):
            raise ValueError(
                f"Instance type '{self.instance_type}' is not one of "
                f"{', '.join(KNOWN_INSTANCE_TYPES)}; "
                "an instance type override must be given"
            )
        instance_type = self.instance_type_manual or self.instance_type
        if self.instance_type in KNOWN_INSTANCE_TYPES:
            instance_type = self.instance_type
        if is_arm_instance_type(instance_type):
            raise ValueError(
                f"Instance type '{instance_type}' is ARM; "
                "the NDI discovery server is installed for x86_64"
            )
        return self

    def resolved_instance_type(self) -> str:
        """The instance type to launch, falling back to the manual override."""
        if self.instance_type in KNOWN_INSTANCE_TYPES:
            return self.instance_type
        assert self.instance_type_manual is not None
        return self.instance_type_manual

    def ami_is_ssm_parameter(self) -> bool:
        return self.ami_id.startswith("/")

    @classmethod
    def from_settings(cls, **kwargs):
        """Create an instance from environment settings with optional overrides."""
        settings = _DiscoveryDeploymentSettings()

        params = {
            "region": settings.region,
            "account": settings.account,
            "instance_name": settings.instance_name,
            "instance_type": settings.instance_type,
            "instance_type_manual": settings.instance_type_manual,
            "volume_size": settings.volume_size,
            "vpc_id": settings.vpc_id,
            "vpc_cidr": settings.vpc_cidr,
            "subnet_ids": unpack_subnet_ids(settings.subnet_ids) or None,
            "ami_id": settings.ami_id,
            "private_dns_name": settings.private_dns_name,
            "owner": settings.owner,
            "extra_tags": unpack_tags(settings.extra_tags_str),
        }

        # Override with any provided kwargs
        params.update(kwargs)

        if params["region"] is None:
            aws_region = os.getenv("AWS_REGION")
            if aws_region is not None:
                params["region"] = aws_region
            else:
                raise ValueError(
                    "Region must be specified either in settings,"
                    f" or as an environment variable {env_prefix}REGION or AWS_REGION."
                )

        if isinstance(params["subnet_ids"], str):
            params["subnet_ids"] = unpack_subnet_ids(params["subnet_ids"])

        # unset values take the model defaults
        return cls(**{k: v for k, v in params.items() if v is not None})
