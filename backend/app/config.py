import logging
import os

logger = logging.getLogger(__name__)


def _canon_prefix(val):
    """
    Normalize API prefix to always be exactly like '/api':
      - defaults to '/api' when unset/empty
      - ensures a single leading slash
      - removes any trailing slash (except for root)
    """
    val = (val or "/api").strip()
    if not val.startswith("/"):
        val = "/" + val
    if len(val) > 1 and val.endswith("/"):
        val = val[:-1]
    return val


def _positive_number(env_var: str, default: float, cast=int):
    raw_value = os.getenv(env_var)
    if raw_value is None or not raw_value.strip():
        return default

    try:
        value = cast(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid number (got %r); defaulting to %s",
            env_var,
            raw_value,
            default,
        )
        return default

    if value <= 0:
        logger.warning("%s must be positive; defaulting to %s", env_var, default)
        return default

    return value


API_PREFIX = _canon_prefix(os.getenv("API_PREFIX"))

# Match validation workflow
AUTO_VALIDATE_AFTER_HOURS = _positive_number("AUTO_VALIDATE_AFTER_HOURS", 24)
CONTEST_WINDOW_DAYS = _positive_number("CONTEST_WINDOW_DAYS", 7)
MAX_CONTESTS_PER_MONTH = _positive_number("MAX_CONTESTS_PER_MONTH", 3)
MATCH_REMINDER_AFTER_HOURS = _positive_number("MATCH_REMINDER_AFTER_HOURS", 6)

# Auto-validation sweeper
AUTO_VALIDATE_INTERVAL_SECONDS = _positive_number(
    "AUTO_VALIDATE_INTERVAL_SECONDS", 3600
)
AUTO_VALIDATE_MATCH_TIMEOUT_SECONDS = _positive_number(
    "AUTO_VALIDATE_MATCH_TIMEOUT_SECONDS", 30.0, cast=float
)


def get_cron_secret() -> str | None:
    """Return the shared secret expected from the external scheduler."""

    secret = (os.getenv("CRON_SECRET") or "").strip()
    return secret or None


def get_allowed_origins() -> list[str]:
    """Parse ``ALLOWED_ORIGINS`` into explicit browser origins.

    Raises ``ValueError`` when the variable is unset, holds no usable origin,
    or lists the ``*`` wildcard.
    """

    raw = (os.getenv("ALLOWED_ORIGINS") or "").strip()
    if not raw:
        raise ValueError(
            "ALLOWED_ORIGINS must be set to a comma-separated list of trusted origins"
        )

    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise ValueError("ALLOWED_ORIGINS does not contain any origin")
    if "*" in origins:
        raise ValueError("ALLOWED_ORIGINS may not use the '*' wildcard; list each origin")
    return origins


def allow_credentials() -> bool:
    return (os.getenv("ALLOW_CREDENTIALS") or "true").strip().lower() == "true"
