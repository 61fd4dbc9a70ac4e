import os
import time
from typing import Any, Callable, Optional, Sequence

import requests
from aws_lambda_powertools import Logger

from localstack_ops.settings import LocalStackSettings

logger = Logger(service="localstack-ops", level=os.getenv("LOG_LEVEL", "INFO").upper())

READY_STATES = frozenset({"running", "available"})
DEFAULT_SERVICES = ("s3", "dynamodb", "ec2")


class LocalStackUnavailableError(RuntimeError):
    """LocalStack did not report the requested services ready in time."""


def pending_services(health: dict[str, Any], services: Sequence[str]) -> list[str]:
    statuses = health.get("services", {})
    return [service for service in services if statuses.get(service) not in READY_STATES]


def fetch_health(settings: LocalStackSettings, session: Any = requests) -> dict[str, Any]:
    response = session.get(settings.health_url, timeout=5)
    response.raise_for_status()
    return response.json()


def wait_for_localstack(
    settings: LocalStackSettings,
    services: Sequence[str] = DEFAULT_SERVICES,
    timeout: float = 60,
    interval: float = 2,
    session: Any = requests,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """Poll the health endpoint until every service in ``services`` is ready.

    Connection errors count as "not ready yet". Returns the last health
    document, or raises :class:`LocalStackUnavailableError` after ``timeout``
    seconds.
    """
    deadline = clock() + timeout
    pending: list[str] = list(services)
    last_error: Optional[str] = None
    while True:
        try:
            health = fetch_health(settings, session=session)
            pending = pending_services(health, services)
            last_error = None
            if not pending:
                logger.info("LocalStack is ready", endpoint=settings.endpoint_url, services=list(services))
                return health
            logger.info("Waiting for LocalStack services", pending=pending)
        except requests.RequestException as e:
            last_error = str(e)
            logger.info("LocalStack not reachable yet", endpoint=settings.endpoint_url, error=last_error)

        if clock() >= deadline:
            break
        sleep(interval)

    detail = last_error or f"services not ready: {', '.join(pending)}"
    logger.error("LocalStack did not become ready", timeout=timeout, detail=detail)
    raise LocalStackUnavailableError(
        f"LocalStack at {settings.endpoint_url} not ready after {timeout}s ({detail})"
    )
