import logging
import os
import sys

import click
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError
from rich import print
from rich.prompt import Confirm

from ._naming import discovery_record_name
from .operations import (
    StackDeploymentError,
    discovery_endpoints,
    print_endpoints,
    protected_instances,
    release_termination_protection,
    wait_for_stack,
)
from .schema import DiscoveryDeploymentConfig

logger = logging.getLogger(__name__)

DEFAULT_STACK_NAME = "NdiDiscoveryStack"

stack_name_option = click.option(
    "--stack-name", default=DEFAULT_STACK_NAME, show_default=True
)
region_option = click.option(
    "--region", envvar="AWS_REGION", required=True, help="AWS region of the stack"
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """Manage NDI discovery server deployments"""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@cli.command()
def show_config():
    """Show the deployment configuration read from the environment"""
    try:
        config = DiscoveryDeploymentConfig.from_settings()
    except (ValidationError, ValueError) as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    print("Current Configuration:")
    print(f"  Region: {config.region}")
    print(f"  Instance Name: {config.instance_name}")
    print(f"  Instance Type: {config.resolved_instance_type()}")
    print(f"  Volume Size: {config.volume_size} GB")
    print(f"  AMI: {config.ami_id}")
    print(f"  VPC: {config.vpc_id} ({config.vpc_cidr})")
    print(f"  Private DNS Name: {config.private_dns_name}")
    print(f"  Owner: {config.owner}")
    print("Discovery Servers:")
    for subnet_id in config.subnet_ids:
        print(
            f"  {subnet_id}: "
            f"{discovery_record_name(subnet_id, config.private_dns_name)}"
        )


@cli.command()
@stack_name_option
@region_option
def endpoints(stack_name, region):
    """Wait for the stack and list the discovery server addresses"""
    try:
        stack = wait_for_stack(stack_name, region)
        found = discovery_endpoints(stack_name, region, stack=stack)
    except StackDeploymentError as e:
        raise click.ClickException(str(e))
    except (BotoCoreError, ClientError) as e:
        raise click.ClickException(f"Failed to read stack {stack_name}: {e}")
    print_endpoints(found)


@cli.command()
@stack_name_option
@region_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def release_protection(stack_name, region, yes):
    """Turn termination protection off so the stack can be deleted"""
    try:
        instance_ids = protected_instances(stack_name, region)
    except (BotoCoreError, ClientError) as e:
        raise click.ClickException(f"Failed to read stack {stack_name}: {e}")

    if not instance_ids:
        print("\nNo protected NDI discovery servers found.\n")
        return

    for instance_id in instance_ids:
        print(f"  {instance_id}")

    # only prompt if in an interactive shell
    is_interactive_shell = sys.stdin.isatty()
    is_ci = "CI" in os.environ
    is_pytest = "PYTEST_CURRENT_TEST" in os.environ

    if not yes and is_interactive_shell and not is_ci and not is_pytest:
        if not Confirm.ask(
            "Release termination protection on ALL the above instances?",
        ):
            print("Cancelled.")
            return

    try:
        release_termination_protection(region, instance_ids)
    except (BotoCoreError, ClientError) as e:
        raise click.ClickException(f"Failed to release protection: {e}")
    print(f"Released termination protection on {len(instance_ids)} instance(s).")


if __name__ == "__main__":
    cli()
