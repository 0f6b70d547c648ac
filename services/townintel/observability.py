"""
Sentry instrumentation for the batch jobs.
Strips tenant identifiers from event extras before they leave the process.
"""

from typing import Any

import sentry_sdk

from services.townintel.config import settings

SENSITIVE_EXTRA_KEYS = {"owner_id", "ownerId", "user_id", "userId"}


def _strip_sensitive_data(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """before_send hook: filter owner identifiers from extras and breadcrumbs."""
    extra = event.get("extra", {})
    if isinstance(extra, dict):
        for key in list(extra.keys()):
            if key in SENSITIVE_EXTRA_KEYS:
                extra[key] = "[FILTERED]"
    if "breadcrumbs" in event:
        for breadcrumb in event["breadcrumbs"].get("values", []):
            data = breadcrumb.get("data", {})
            if isinstance(data, dict):
                for key in list(data.keys()):
                    if key in SENSITIVE_EXTRA_KEYS:
                        data[key] = "[FILTERED]"
    return event


def setup_sentry() -> None:
    if not settings.sentry_dsn:
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        before_send=_strip_sensitive_data,
        send_default_pii=False,
    )


def capture_job_failure(exc: BaseException, **context: Any) -> None:
    """Report a per-target job failure. No-op when Sentry is not initialised."""
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)
