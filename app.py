#!/usr/bin/env python3
"""AWS CDK entrypoint for provisioning one infrastructure environment.

The target environment comes from the ``environment`` context value
(``cdk synth -c environment=dev``) and defaults to LocalStack. Every other
setting is resolved by :func:`common.config.load_config` from the
environment preset, the CDK context and ``INFRA_*`` environment variables.
"""
import aws_cdk as cdk
from attrs import fields

from common import constants
from common.config import InfraConfig, load_config
from environments.infra_stack import InfraStack, stack_environment

app = cdk.App()

environment = app.node.try_get_context("environment") or constants.DEFAULT_ENV
context = {
    attribute.name: app.node.try_get_context(attribute.name)
    for attribute in fields(InfraConfig)
}
config = load_config(environment, context=context)

env = stack_environment(config)

stack_name = "".join(
    part.capitalize() for part in (*config.project_name.split("-"), config.environment)
)
InfraStack(app, f"{stack_name}InfraStack", config=config, env=env)

app.synth()
