"""Locust scenarios for session polling and refresh rotation load testing."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass

from locust import HttpUser, between, events, task


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment flag."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with fallback."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class LoadSettings:
    """Runtime settings for load-test behavior."""

    service_key: str
    role: str
    allow_429: bool
    require_rate_limit: bool
    max_failure_rate_pct: float


SETTINGS = LoadSettings(
    service_key=os.environ.get("SESSION_LOAD_SERVICE_KEY", "load-test-service-key"),
    role=os.environ.get("SESSION_LOAD_ROLE", "customer"),
    allow_429=_env_bool("SESSION_LOAD_ALLOW_429", False),
    require_rate_limit=_env_bool("SESSION_LOAD_REQUIRE_RATE_LIMIT", False),
    max_failure_rate_pct=_env_float("SESSION_LOAD_MAX_FAILURE_RATE_PCT", 0.1),
)

_rate_limit_observed = False


class _SessionBootstrapMixin:
    """Create one session per virtual user; cookies live in the locust client jar."""

    def _bootstrap_session(self) -> bool:
        response = self.client.post(
            "/api/auth/session/create",
            json={"user_id": str(uuid.uuid4()), "role": SETTINGS.role},
            headers={"X-Service-Key": SETTINGS.service_key},
            name="POST /api/auth/session/create [bootstrap]",
        )
        if response.status_code != 201:
            print(f"[loadtest] session bootstrap failed with status={response.status_code}")
            return False
        return True


def _handle_rate_limit(response) -> bool:
    """Accept 429 when configured and remember that the limiter fired."""
    global _rate_limit_observed
    if response.status_code == 429 and SETTINGS.allow_429:
        _rate_limit_observed = True
        response.success()
        return True
    return False


class SessionPollUser(_SessionBootstrapMixin, HttpUser):
    """Steady session polling, the dominant production traffic shape."""

    wait_time = between(0.05, 0.2)
    weight = 3

    def on_start(self) -> None:
        """Open a session for this virtual user."""
        self._ready = self._bootstrap_session()

    @task
    def poll(self) -> None:
        """Poll the session status endpoint."""
        if not self._ready:
            self._ready = self._bootstrap_session()
            if not self._ready:
                return
        with self.client.get(
            "/api/auth/session", name="GET /api/auth/session", catch_response=True
        ) as response:
            if response.status_code == 200 and response.json().get("valid") is True:
                response.success()
                return
            if _handle_rate_limit(response):
                return
            response.failure(f"unexpected status={response.status_code}")


class RefreshRotationUser(_SessionBootstrapMixin, HttpUser):
    """Repeated refresh rotation against the conditional-update path."""

    wait_time = between(0.05, 0.2)
    weight = 1

    def on_start(self) -> None:
        """Open a session for this virtual user."""
        self._ready = self._bootstrap_session()

    @task
    def refresh(self) -> None:
        """Rotate the refresh cookie."""
        if not self._ready:
            self._ready = self._bootstrap_session()
            if not self._ready:
                return
        with self.client.post(
            "/api/auth/session/refresh",
            name="POST /api/auth/session/refresh",
            catch_response=True,
        ) as response:
            if response.status_code == 200 and response.json().get("session_id"):
                response.success()
                return
            if _handle_rate_limit(response):
                return
            self._ready = False
            response.failure(f"unexpected status={response.status_code}")


@events.quitting.add_listener
def _on_quitting(environment, **_kwargs) -> None:
    """Enforce pass/fail thresholds at test shutdown."""
    failure_rate_pct = environment.stats.total.fail_ratio * 100.0
    if SETTINGS.max_failure_rate_pct >= 0 and failure_rate_pct > SETTINGS.max_failure_rate_pct:
        print(
            f"[loadtest] failure rate {failure_rate_pct:.3f}% exceeded "
            f"max {SETTINGS.max_failure_rate_pct:.3f}%"
        )
        environment.process_exit_code = 1

    if SETTINGS.require_rate_limit and not _rate_limit_observed:
        print("[loadtest] expected at least one 429 response but none were observed")
        environment.process_exit_code = 1
