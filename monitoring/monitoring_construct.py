from typing import Optional

from aws_cdk import (
    Duration,
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cw_actions,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_kms as kms,
    aws_sns as sns,
    aws_sns_subscriptions as subscriptions,
)
from constructs import Construct

from common import constants
from common.config import InfraConfig
from common.stack_context import StackContext
from compute.compute_construct import ComputeConstruct
from loadbalancer.loadbalancer_construct import LoadBalancerConstruct

EC2_NAMESPACE = "AWS/EC2"
ALB_5XX_THRESHOLD = 10


class MonitoringConstruct(Construct):
    """Alarm topic, application log groups, alarms and a dashboard."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        context: StackContext,
        config: InfraConfig,
        compute: ComputeConstruct,
        load_balancer: Optional[LoadBalancerConstruct] = None,
        encryption_key: Optional[kms.IKey] = None,
    ) -> None:
        super().__init__(scope, construct_id)
        self.context = context
        self.config = config

        # SNS topic for alarm notifications
        self.alarm_topic = self.create_alarm_topic(encryption_key)
        self.alarm_action = cw_actions.SnsAction(self.alarm_topic)

        # Log groups the CloudWatch agent ships application logs to
        self.web_log_group = context.build_log_group(self, constants.TIER_WEB, encryption_key)
        self.app_log_group = context.build_log_group(self, constants.TIER_APP, encryption_key)

        self.alarms: list[cloudwatch.Alarm] = []
        self.cpu_metrics = self.build_cpu_metrics(compute)
        for label, metric in self.cpu_metrics.items():
            self.alarms.append(
                self.create_alarm(
                    f"{label}-high-cpu",
                    metric,
                    threshold=config.cpu_alarm_threshold,
                    comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_THRESHOLD,
                    description=f"CPU utilization of {label} above {config.cpu_alarm_threshold}%",
                )
            )
        for label, instance_id in self.individual_instances(compute).items():
            self.alarms.append(
                self.create_alarm(
                    f"{label}-status-check",
                    self.ec2_metric("StatusCheckFailed", {"InstanceId": instance_id}, "Maximum", 1),
                    threshold=1,
                    comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD,
                    description=f"EC2 status check failed on {label}",
                )
            )
        if load_balancer is not None:
            self.alarms.extend(self.create_load_balancer_alarms(load_balancer))

        self.dashboard = self.create_dashboard(load_balancer)

    @staticmethod
    def ec2_metric(
        metric_name: str,
        dimensions: dict[str, str],
        statistic: str = "Average",
        period_minutes: int = constants.ALARM_PERIOD_MINUTES,
    ) -> cloudwatch.Metric:
        return cloudwatch.Metric(
            namespace=EC2_NAMESPACE,
            metric_name=metric_name,
            dimensions_map=dimensions,
            statistic=statistic,
            period=Duration.minutes(period_minutes),
        )

    @staticmethod
    def individual_instances(compute: ComputeConstruct) -> dict[str, str]:
        instances = {}
        for tier, instance_ids in (
            (constants.TIER_WEB, compute.web_instance_ids),
            (constants.TIER_APP, compute.app_instance_ids),
        ):
            for index, instance_id in enumerate(instance_ids, start=1):
                instances[f"{tier}-{index}"] = instance_id
        return instances

    def build_cpu_metrics(self, compute: ComputeConstruct) -> dict[str, cloudwatch.Metric]:
        metrics = {}
        for tier, asg in ((constants.TIER_WEB, compute.web_asg), (constants.TIER_APP, compute.app_asg)):
            if asg is not None:
                metrics[f"{tier}-asg"] = self.ec2_metric(
                    "CPUUtilization", {"AutoScalingGroupName": asg.auto_scaling_group_name}
                )
        for label, instance_id in self.individual_instances(compute).items():
            metrics[label] = self.ec2_metric("CPUUtilization", {"InstanceId": instance_id})
        return metrics

    def create_alarm_topic(self, encryption_key: Optional[kms.IKey]) -> sns.Topic:
        topic = sns.Topic(
            self,
            "AlarmTopic",
            topic_name=self.context.build_resource_name("alarms"),
            display_name=f"{self.context.project} {self.context.env} alarms",
            master_key=encryption_key,
        )
        if encryption_key is not None:
            # CloudWatch must be able to publish to the encrypted topic
            encryption_key.add_to_resource_policy(
                iam.PolicyStatement(
                    sid="AllowCloudWatchAlarms",
                    principals=[iam.ServicePrincipal("cloudwatch.amazonaws.com")],
                    actions=["kms:Decrypt", "kms:GenerateDataKey*"],
                    resources=["*"],
                )
            )
        if self.config.alarm_email:
            topic.add_subscription(subscriptions.EmailSubscription(self.config.alarm_email))
        return topic

    def create_alarm(
        self,
        name: str,
        metric: cloudwatch.IMetric,
        threshold: float,
        comparison_operator: cloudwatch.ComparisonOperator,
        description: str,
    ) -> cloudwatch.Alarm:
        alarm = cloudwatch.Alarm(
            self,
            self.context.build_resource_id(name),
            alarm_name=self.context.build_resource_name(name),
            alarm_description=description,
            metric=metric,
            threshold=threshold,
            evaluation_periods=constants.ALARM_EVALUATION_PERIODS,
            comparison_operator=comparison_operator,
            treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
        )
        alarm.add_alarm_action(self.alarm_action)
        alarm.add_ok_action(self.alarm_action)
        return alarm

    def create_load_balancer_alarms(
        self, load_balancer: LoadBalancerConstruct
    ) -> list[cloudwatch.Alarm]:
        period = Duration.minutes(constants.ALARM_PERIOD_MINUTES)
        return [
            self.create_alarm(
                "alb-5xx",
                load_balancer.alb.metrics.http_code_elb(
                    elbv2.HttpCodeElb.ELB_5XX_COUNT, period=period, statistic="Sum"
                ),
                threshold=ALB_5XX_THRESHOLD,
                comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_THRESHOLD,
                description="Load balancer is returning 5XX responses",
            ),
            self.create_alarm(
                "alb-unhealthy-hosts",
                load_balancer.target_group.metrics.unhealthy_host_count(
                    period=period, statistic="Maximum"
                ),
                threshold=1,
                comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD,
                description="Web target group has unhealthy hosts",
            ),
        ]

    def create_dashboard(
        self, load_balancer: Optional[LoadBalancerConstruct]
    ) -> cloudwatch.Dashboard:
        dashboard = cloudwatch.Dashboard(
            self,
            "Dashboard",
            dashboard_name=self.context.build_resource_name("dashboard"),
        )
        dashboard.add_widgets(
            cloudwatch.GraphWidget(
                title="CPU utilization",
                left=list(self.cpu_metrics.values()),
                width=24,
            )
        )
        if load_balancer is not None:
            dashboard.add_widgets(
                cloudwatch.GraphWidget(
                    title="ALB requests",
                    left=[load_balancer.alb.metrics.request_count()],
                    width=12,
                ),
                cloudwatch.GraphWidget(
                    title="ALB target response time",
                    left=[load_balancer.alb.metrics.target_response_time()],
                    width=12,
                ),
            )
        return dashboard
