"""CDK application entry point for the NDI discovery server infrastructure.

This module loads the deployment parameters from the environment
(see ndidiscovery.schema) and synthesises the NDI discovery stack.
"""
import aws_cdk as cdk
from ndidiscoveryinfra.ndidiscovery_stack import NdiDiscoveryStack

from ndidiscovery.schema import DiscoveryDeploymentConfig

config = DiscoveryDeploymentConfig.from_settings()

app = cdk.App()

core_stack = NdiDiscoveryStack(
    app,
    "NdiDiscoveryStack",
    config=config,
    env=cdk.Environment(account=config.account, region=config.region),
    tags={
        "Project": "ndidiscoveryinfra",
    },
)

app.synth()
