from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Execution policy settings."""

    # None keeps retries unbounded.
    max_retries: Optional[int] = None
    stall_timeout_seconds: float = 3600.0
    enforce_task_assignment: bool = True


class WebhookConfig(BaseModel):
    """Incoming webhook URLs for chat channels."""

    slack_url: Optional[str] = None
    teams_url: Optional[str] = None
    timeout: float = 10.0


class EmailConfig(BaseModel):
    """ElasticEmail settings for the email channel."""

    api_url: str = "https://api.elasticemail.com/v2/email/send"
    api_key: Optional[str] = None
    from_email: Optional[str] = None
    from_name: str = "Training Manager"
    timeout: float = 10.0


class NotificationConfig(BaseModel):
    """Notification channel configuration."""

    backend: Literal["inmemory", "webhook", "email", "composite"] = "inmemory"
    webhook: WebhookConfig = WebhookConfig()
    email: EmailConfig = EmailConfig()


class TrainflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    engine: EngineConfig = EngineConfig()
    notifications: NotificationConfig = NotificationConfig()
    # role name -> user ids
    directory: Dict[str, List[str]] = Field(default_factory=dict)


def load_config(path: Optional[str] = None) -> TrainflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TRAINFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("TRAINFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = TrainflowConfig(**data)
    else:
        config = TrainflowConfig()

    env_db_url = os.getenv("TRAINFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url

    webhook = config.notifications.webhook
    webhook.slack_url = os.getenv("TRAINFLOW_SLACK_WEBHOOK_URL") or webhook.slack_url
    webhook.teams_url = os.getenv("TRAINFLOW_TEAMS_WEBHOOK_URL") or webhook.teams_url

    email = config.notifications.email
    email.api_key = os.getenv("ELASTICEMAIL_API_KEY") or email.api_key
    email.from_email = os.getenv("ELASTICEMAIL_FROM_EMAIL") or email.from_email
    return config
