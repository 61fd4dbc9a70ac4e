from attrs import define, field
from aws_cdk import RemovalPolicy, Stack, Tags, aws_kms as kms, aws_logs as logs
from constructs import Construct
from typing import Optional

import common.constants as constants
from common.config import InfraConfig


@define(slots=True, frozen=True)
class StackContext:
    scope: Stack
    config: InfraConfig
    managed_by: str = field(default=constants.MANAGED_BY, init=False)

    @property
    def env(self) -> str:
        return self.config.environment

    @property
    def project(self) -> str:
        return self.config.project_name

    @property
    def aws_account_id(self) -> str:
        return Stack.of(self.scope).account

    @property
    def aws_region(self) -> str:
        return Stack.of(self.scope).region

    # ---------- naming ----------
    def build_resource_name(self, resource_type: str) -> str:
        """Build a physical resource name.

        Example: infra-demo-localstack-web-sg
        """
        return f"{self.project}-{self.env}-{resource_type}".lower()

    def build_resource_id(self, resource_type: str) -> str:
        """Build a construct id.

        Example: InfraDemoLocalstackWebSg
        """
        parts = [*self.project.split("-"), self.env, *resource_type.split("-")]
        return "".join(part.capitalize() for part in parts if part)

    def build_log_group_name(self, name: str) -> str:
        return f"/{self.project}/{self.env}/{name}"

    # ---------- tagging ----------
    def apply_tags(self, scope: Optional[Construct] = None) -> None:
        tags = Tags.of(scope or self.scope)
        tags.add("Project", self.project)
        tags.add("Environment", self.env)
        tags.add("ManagedBy", self.managed_by)
        for key, value in self.config.tags.items():
            tags.add(key, value)

    def build_log_group(
        self,
        scope: Construct,
        name: str,
        encryption_key: Optional[kms.IKey] = None,
    ) -> logs.LogGroup:
        return logs.LogGroup(
            scope,
            self.build_resource_id(f"{name}-log-group"),
            log_group_name=self.build_log_group_name(name),
            removal_policy=RemovalPolicy.DESTROY,
            retention=constants.LOG_RETENTION[self.config.log_retention_days],
            encryption_key=encryption_key,
        )
