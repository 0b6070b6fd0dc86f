"""
Logfire observability configuration for ConsumerLab.

Provides tracing for:
- Background job execution (profile generation, preference analysis)
- Individual completion-provider calls

Usage:
    # At app startup (API or CLI)
    from consumerlab.core.observability import setup_logfire
    setup_logfire()

    # In services
    import logfire

    with logfire.span("profile_chunk", chunk=index):
        ...

Environment Variables:
    LOGFIRE_TOKEN: Your Logfire write token (spans are only exported when set)
    LOGFIRE_PROJECT_NAME: Project name in Logfire dashboard
    LOGFIRE_ENVIRONMENT: Environment name (development, staging, production)
"""

import os
import logging
from typing import Optional

import logfire

logger = logging.getLogger(__name__)

_logfire_configured = False


def setup_logfire(
    project_name: Optional[str] = None,
    environment: Optional[str] = None,
    service_name: str = "consumerlab"
) -> bool:
    """
    Configure Logfire for observability.

    Without LOGFIRE_TOKEN, Logfire is configured locally (nothing sent, no
    console output) so spans in the services stay cheap no-ops.

    Args:
        project_name: Logfire project name (or LOGFIRE_PROJECT_NAME env var)
        environment: Environment name (or LOGFIRE_ENVIRONMENT env var)
        service_name: Service name for tracing

    Returns:
        True if spans are exported to Logfire, False if configured locally
    """
    global _logfire_configured

    token = os.environ.get("LOGFIRE_TOKEN")

    if _logfire_configured:
        logger.debug("Logfire already configured")
        return bool(token)

    if not token:
        logger.info("LOGFIRE_TOKEN not set, configuring Logfire without export")
        logfire.configure(send_to_logfire=False, console=False, service_name=service_name)
        _logfire_configured = True
        return False

    project = project_name or os.environ.get("LOGFIRE_PROJECT_NAME", "consumerlab")
    env = environment or os.environ.get("LOGFIRE_ENVIRONMENT", "development")

    try:
        logfire.configure(
            token=token,
            service_name=service_name,
            environment=env,
            send_to_logfire=True,
        )

        # Validation tracing for request/record models
        logfire.instrument_pydantic()

        _logfire_configured = True
        logger.info(f"Logfire configured: project={project}, environment={env}")
        return True

    except Exception as e:
        logger.error(f"Failed to configure Logfire: {e}")
        return False
