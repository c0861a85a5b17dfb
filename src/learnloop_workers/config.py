import json
import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


def int_env(name: str, default: int, minimum: int, maximum: int | None = None) -> int:
    raw = os.environ.get(name, str(default)).strip()
    try:
        parsed = max(minimum, int(raw))
    except ValueError:
        parsed = max(minimum, default)
    return parsed if maximum is None else min(maximum, parsed)


def float_env(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = os.environ.get(name, str(default)).strip()
    try:
        parsed = float(raw)
    except ValueError:
        parsed = default
    return min(maximum, max(minimum, parsed))


def bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def weights_env(name: str, defaults: dict[str, float]) -> dict[str, float]:
    """Merge a JSON object of ``{key: weight}`` from ``name`` over ``defaults``.

    Malformed payloads and non-numeric weights are ignored with a warning.
    """
    raw = os.environ.get(name, "").strip()
    merged = dict(defaults)
    if not raw:
        return merged
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring %s: not valid JSON", name)
        return merged
    if not isinstance(payload, dict):
        logger.warning("Ignoring %s: expected a JSON object", name)
        return merged
    for key, value in payload.items():
        try:
            weight = float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring %s[%s]: weight must be numeric", name, key)
            continue
        if weight < 0:
            logger.warning("Ignoring %s[%s]: weight must be >= 0", name, key)
            continue
        merged[str(key).strip()] = weight
    return merged


@dataclass(frozen=True)
class Config:
    database_url: str
    github_token: str = ""
    github_owner: str = ""
    github_repo: str = ""
    github_api_url: str = GITHUB_API_URL
    tracker_timeout_seconds: float = 10.0
    log_format: str = "json"
    log_level: str = "INFO"

    @property
    def tracker_configured(self) -> bool:
        return bool(self.github_token and self.github_owner and self.github_repo)

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL must be set")

        return cls(
            database_url=database_url,
            github_token=os.environ.get("LEARNLOOP_GITHUB_TOKEN", "").strip(),
            github_owner=os.environ.get("LEARNLOOP_GITHUB_OWNER", "").strip(),
            github_repo=os.environ.get("LEARNLOOP_GITHUB_REPO", "").strip(),
            github_api_url=os.environ.get("LEARNLOOP_GITHUB_API_URL", GITHUB_API_URL).rstrip("/"),
            tracker_timeout_seconds=float_env("LEARNLOOP_TRACKER_TIMEOUT", 10.0, 1.0, 120.0),
            log_format=os.environ.get("LEARNLOOP_LOG_FORMAT", "json"),
            log_level=os.environ.get("LEARNLOOP_LOG_LEVEL", "INFO"),
        )
