"""Authentication and provider detection for scheduled processing triggers.

Cron providers call ``POST /api/cron/process-jobs`` with the shared secret in
the ``X-Webhook-Secret`` header. The provider is identified by its User-Agent
and decides how many jobs a single trigger may process.

Security Note:
    validate_cron_secret MUST be called before any processing. Return 401
    Unauthorized immediately if validation fails.
"""

import hmac
from dataclasses import dataclass


@dataclass(frozen=True)
class CronProvider:
    name: str
    user_agent: str  # lowercase substring matched against User-Agent
    max_jobs: int
    emergency_max_jobs: int

    def job_cap(self, emergency_mode: bool) -> int:
        return self.emergency_max_jobs if emergency_mode else self.max_jobs


GITHUB_ACTIONS = CronProvider("GitHub Actions", "github-actions", 8, 15)
VERCEL_CRON = CronProvider("Vercel Cron", "vercel-cron", 12, 25)
EXTERNAL_CRON = CronProvider("External Cron", "external-cron", 10, 20)

CRON_PROVIDERS = (GITHUB_ACTIONS, VERCEL_CRON, EXTERNAL_CRON)


def detect_cron_provider(user_agent: str | None) -> CronProvider:
    """Identify the caller from its User-Agent; unknown callers count as external cron."""
    user_agent_lower = (user_agent or "").lower()
    for provider in CRON_PROVIDERS:
        if provider.user_agent in user_agent_lower:
            return provider
    return EXTERNAL_CRON


def validate_cron_secret(provided: str | None, expected: str) -> bool:
    """Check the shared webhook secret.

    Args:
        provided: Value of the X-Webhook-Secret header (None if absent)
        expected: CRON_WEBHOOK_SECRET from settings

    Returns:
        True if the header matches the configured secret, False otherwise.

    Security:
        - Uses hmac.compare_digest() for constant-time comparison to prevent
          timing attacks. Never use == for secret comparison.
        - An empty ``expected`` never validates; callers decide whether an
          unconfigured secret is acceptable (development only).
    """
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
