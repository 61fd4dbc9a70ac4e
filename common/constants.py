from aws_cdk import aws_ec2 as ec2, aws_logs as logs

DEFAULT_PROJECT_NAME = "infra-demo"
DEFAULT_ENV = "localstack"
DEFAULT_REGION = "us-east-1"
ENVIRONMENTS = ("localstack", "dev", "staging", "prod")
CONFIG_ENV_PREFIX = "INFRA_"
MANAGED_BY = "cdk"

VPC_CIDR = "10.0.0.0/16"
CIDR_MASK = 24
DEFAULT_AZ_COUNT = 2
ANY_IPV4_CIDR = "0.0.0.0/0"

# Tiers (used in naming)
TIER_WEB = "web"
TIER_APP = "app"
TIER_DATA = "data"

HTTP_PORT = 80
HTTPS_PORT = 443
SSH_PORT = 22
APP_PORT = 8080
POSTGRES_PORT = 5432
MYSQL_PORT = 3306

DEFAULT_INSTANCE_TYPE = "t3.micro"
ROOT_DEVICE_NAME = "/dev/xvda"
# Default image registered by LocalStack's EC2 emulation
LOCALSTACK_AMI_ID = "ami-ff0fea8310f3"
USER_DATA_DIR = "user_data"
WEB_USER_DATA = "web_server.sh"
APP_USER_DATA = "app_server.sh"

CPU_TARGET_UTILIZATION = 70
ASG_HEALTH_CHECK_GRACE_SECONDS = 300
HEALTHY_HTTP_CODES = "200,301"
ALARM_EVALUATION_PERIODS = 2
ALARM_PERIOD_MINUTES = 5

LOG_RETENTION = {
    1: logs.RetentionDays.ONE_DAY,
    3: logs.RetentionDays.THREE_DAYS,
    5: logs.RetentionDays.FIVE_DAYS,
    7: logs.RetentionDays.ONE_WEEK,
    14: logs.RetentionDays.TWO_WEEKS,
    30: logs.RetentionDays.ONE_MONTH,
    60: logs.RetentionDays.TWO_MONTHS,
    90: logs.RetentionDays.THREE_MONTHS,
    180: logs.RetentionDays.SIX_MONTHS,
    365: logs.RetentionDays.ONE_YEAR,
}

INSTANCE_MANAGED_POLICIES = (
    "AmazonSSMManagedInstanceCore",
    "CloudWatchAgentServerPolicy",
)

PRIVATE_SUBNET_WITH_NAT = ec2.SubnetType.PRIVATE_WITH_EGRESS
PRIVATE_SUBNET_WITHOUT_NAT = ec2.SubnetType.PRIVATE_ISOLATED
