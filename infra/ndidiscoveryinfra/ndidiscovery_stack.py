"""Module for defining the NDI discovery server infrastructure using AWS CDK.

This module contains the CDK stack definition that deploys one NDI discovery
server per subnet of an existing VPC, together with a private hosted zone
resolving `discovery-<subnet>.<domain>` to each server.

It does not create the VPC or its subnets; those are supplied by the operator.
"""

from logging import getLogger

import aws_cdk as cdk
import aws_cdk.aws_ec2 as ec2
import aws_cdk.aws_iam as iam
import aws_cdk.aws_route53 as route53
from constructs import Construct

from ndidiscovery._bootstrap import (
    NDI_DISCOVERY_PORT,
    discovery_init,
    discovery_init_options,
    discovery_user_data,
)
from ndidiscovery._naming import (
    discovery_record_name,
    dns_record_logical_id,
    instance_logical_id,
    output_logical_id,
)
from ndidiscovery._unpack_tags import instance_tags
from ndidiscovery.schema import DiscoveryDeploymentConfig

logger = getLogger(__name__)

STACK_DESCRIPTION = (
    "Deploys one NDI Discovery Server per subnet as described in the AWS "
    "solution guidance (SO9433) (uksb-1tupboc64)."
)

DNS_RECORD_TTL = 900


class NdiDiscoveryStack(cdk.Stack):
    """CDK Stack deploying NDI discovery servers.

    One EC2 instance and one DNS record per configured subnet.
    """

    def __init__(
        self,
        scope: Construct,
        id: str,
        config: DiscoveryDeploymentConfig,
        **kwargs,
    ) -> None:
        """Initialize the NDI discovery stack.

        Args:
            scope: The parent construct.
            id: The construct ID.
            config: The deployment parameters.
            **kwargs: Additional keyword arguments passed to the parent Stack.
        """
        kwargs.setdefault("description", STACK_DESCRIPTION)
        super().__init__(scope, id, **kwargs)

        self.config = config

        # IAM Role for the discovery servers, SSM access only
        self.instance_role = iam.Role(
            self,
            "IamInstanceProfileRole",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "AmazonSSMManagedEC2InstanceDefaultPolicy"
                ),
            ],
        )
        _override_logical_id(self.instance_role, "IamInstanceProfileRole")

        self.instance_profile = iam.InstanceProfile(
            self, "NdiInstanceProfile", role=self.instance_role, path="/"
        )
        _override_logical_id(self.instance_profile, "NdiInstanceProfile")

        self.security_group = ec2.CfnSecurityGroup(
            self,
            "NdiInstanceSecurityGroup",
            group_description="Limits traffic to NDI only",
            vpc_id=config.vpc_id,
            security_group_ingress=[
                ec2.CfnSecurityGroup.IngressProperty(
                    ip_protocol="tcp",
                    from_port=NDI_DISCOVERY_PORT,
                    to_port=NDI_DISCOVERY_PORT,
                    cidr_ip=config.vpc_cidr,
                    description="Only allow NDI traffic from the VPC",
                ),
            ],
            security_group_egress=[
                ec2.CfnSecurityGroup.EgressProperty(
                    ip_protocol="tcp",
                    from_port=80,
                    to_port=80,
                    cidr_ip="0.0.0.0/0",
                    description="HTTP Outbound traffic",
                ),
                ec2.CfnSecurityGroup.EgressProperty(
                    ip_protocol="tcp",
                    from_port=443,
                    to_port=443,
                    cidr_ip="0.0.0.0/0",
                    description="HTTPS Outbound traffic",
                ),
                ec2.CfnSecurityGroup.EgressProperty(
                    ip_protocol="tcp",
                    from_port=NDI_DISCOVERY_PORT,
                    to_port=NDI_DISCOVERY_PORT,
                    cidr_ip=config.vpc_cidr,
                    description="Only allow NDI traffic to the VPC",
                ),
            ],
        )

        self.hosted_zone = route53.CfnHostedZone(
            self,
            "PrivateHostedZone",
            name=config.private_dns_name,
            vpcs=[
                route53.CfnHostedZone.VPCProperty(
                    vpc_id=config.vpc_id, vpc_region=cdk.Aws.REGION
                )
            ],
        )

        self.image_id = self._image_id()

        self.instances: dict[str, ec2.CfnInstance] = {}
        self.dns_records: dict[str, route53.CfnRecordSet] = {}
        for subnet_id in config.subnet_ids:
            instance = self._discovery_instance(subnet_id)
            self.instances[subnet_id] = instance
            self.dns_records[subnet_id] = self._discovery_record(subnet_id, instance)

        logger.info(
            f"Defined {len(self.instances)} NDI discovery server(s) "
            f"in {config.vpc_id} under {config.private_dns_name}"
        )

    def _image_id(self) -> str:
        if self.config.ami_is_ssm_parameter():
            # resolved by CloudFormation at deploy time, like an SSM typed parameter
            return (
                ec2.MachineImage.from_ssm_parameter(self.config.ami_id)
                .get_image(self)
                .image_id
            )
        return self.config.ami_id

    def _discovery_instance(self, subnet_id: str) -> ec2.CfnInstance:
        config = self.config
        logical_id = instance_logical_id(subnet_id)

        instance = ec2.CfnInstance(
            self,
            logical_id,
            image_id=self.image_id,
            instance_type=config.resolved_instance_type(),
            iam_instance_profile=self.instance_profile.instance_profile_name,
            block_device_mappings=[
                ec2.CfnInstance.BlockDeviceMappingProperty(
                    device_name="/dev/xvda",
                    ebs=ec2.CfnInstance.EbsProperty(
                        delete_on_termination=True,
                        volume_size=config.volume_size,
                        volume_type="gp3",
                        encrypted=True,
                    ),
                )
            ],
            disable_api_termination=True,
            network_interfaces=[
                ec2.CfnInstance.NetworkInterfaceProperty(
                    delete_on_termination=True,
                    device_index="0",
                    group_set=[self.security_group.attr_group_id],
                    subnet_id=subnet_id,
                )
            ],
            tags=[
                cdk.CfnTag(key=key, value=value)
                for key, value in instance_tags(
                    config.instance_name, config.owner, subnet_id, config.extra_tags
                )
            ],
        )

        # cfn-init metadata, the cfn-init/cfn-signal user data and the
        # signalling permissions on the instance role
        options = discovery_init_options()
        user_data = discovery_user_data()
        discovery_init().attach(
            instance,
            instance_role=self.instance_role,
            platform=ec2.OperatingSystemType.LINUX,
            user_data=user_data,
            config_sets=options.config_sets,
            print_log=options.print_log,
        )
        instance.user_data = cdk.Fn.base64(user_data.render())

        instance.cfn_options.creation_policy = cdk.CfnCreationPolicy(
            resource_signal=cdk.CfnResourceSignal(
                count=1, timeout=options.timeout.to_iso_string()
            )
        )

        logger.debug(f"Discovery server {logical_id} in {subnet_id}")
        return instance

    def _discovery_record(
        self, subnet_id: str, instance: ec2.CfnInstance
    ) -> route53.CfnRecordSet:
        record_name = discovery_record_name(subnet_id, self.config.private_dns_name)

        record = route53.CfnRecordSet(
            self,
            dns_record_logical_id(subnet_id),
            hosted_zone_id=self.hosted_zone.ref,
            name=record_name,
            type="A",
            ttl=str(DNS_RECORD_TTL),
            resource_records=[instance.attr_private_ip],
            comment="NDI Discovery service",
        )

        cdk.CfnOutput(
            self,
            output_logical_id(subnet_id),
            value=record_name,
            description=f"Address of the NDI Discovery Server in subnet {subnet_id}",
        )

        return record


def _override_logical_id(construct: Construct, logical_id: str) -> None:
    resource = construct.node.default_child
    assert isinstance(resource, cdk.CfnResource)
    resource.override_logical_id(logical_id)
