from __future__ import annotations

import os
from dataclasses import dataclass

from .runtime import DesiredState


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Desired state
    service_name: str = os.getenv("RSR_SERVICE_NAME", "web")
    image: str = os.getenv("RSR_IMAGE", "nginx:alpine")
    version: str = os.getenv("RSR_VERSION", "v1")
    replicas: int = _env_int("RSR_REPLICAS", 1)

    # Loop
    poll_interval_s: int = _env_int("RSR_POLL_INTERVAL_S", 5)
    # 0 keeps the implicit policy: full deficit when nothing stale is alive, else 1.
    roll_max_batch: int = _env_int("RSR_ROLL_MAX_BATCH", 0)
    backoff_base_s: int = _env_int("RSR_BACKOFF_BASE_S", 5)
    backoff_cap_s: int = _env_int("RSR_BACKOFF_CAP_S", 300)
    # 0 clears crash history at the first Running observation.
    forgive_after_s: int = _env_int("RSR_FORGIVE_AFTER_S", 0)
    # A container neither running nor exited for this long counts as a failure.
    pending_timeout_s: int = _env_int("RSR_PENDING_TIMEOUT_S", 60)

    # Engine
    docker_network: str = os.getenv("RSR_DOCKER_NETWORK", "")
    gateway_timeout_s: int = _env_int("RSR_GATEWAY_TIMEOUT_S", 30)
    stop_timeout_s: int = _env_int("RSR_STOP_TIMEOUT_S", 10)
    reconnect_delay_s: int = _env_int("RSR_RECONNECT_DELAY_S", 5)
    reconnect_max_attempts: int = _env_int("RSR_RECONNECT_MAX_ATTEMPTS", 0)

    # Event log
    db_path: str = os.getenv("RSR_DB_PATH", "rsr.db")

    # Email alerting (optional)
    enable_email: bool = _env_bool("RSR_ENABLE_EMAIL", False)
    alert_failure_threshold: int = _env_int("RSR_ALERT_FAILURE_THRESHOLD", 3)
    smtp_host: str = os.getenv("RSR_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("RSR_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("RSR_SMTP_USER")
    smtp_password: str | None = os.getenv("RSR_SMTP_PASSWORD")
    email_from: str | None = os.getenv("RSR_EMAIL_FROM")
    email_to: str | None = os.getenv("RSR_EMAIL_TO")

    def desired_state(self) -> DesiredState:
        return DesiredState(
            service_name=self.service_name,
            image=self.image,
            version_label=self.version,
            desired_replicas=self.replicas,
        )

    def roll_batch(self) -> int | None:
        return self.roll_max_batch if self.roll_max_batch > 0 else None


settings = Settings()
