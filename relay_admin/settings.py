from __future__ import annotations

"""Application-level configuration (env → Settings).

Everything that reads the environment lives here so route modules and
helpers only ever see a :class:`Settings` instance.  Secrets are kept as
:class:`~relay_admin.utils.credentials.Credential` handles and resolved on use.
"""

# Standard library
import os
from dataclasses import dataclass, field
from functools import lru_cache

from relay_admin import APP_ENV, DEFAULT_MODERATION_SERVICE_URL, DEFAULT_REALNESS_API_URL, DEFAULT_SUMMARY_MODEL
from relay_admin.utils.credentials import Credential, credential_from_env
from relay_admin.utils.nostr import normalize_pubkey
from relay_admin.utils.utils import get_env_float, split_csv

__all__ = ["Settings", "load_settings", "get_settings"]


def _collect_origins() -> list[str]:
    """Collect allowed CORS origins from ``ALLOWED_ORIGINS``.

    The first entry doubles as the fallback origin sent to callers that are
    not on the list, so keep the primary dashboard first.
    """
    return split_csv(os.getenv("ALLOWED_ORIGINS"))


@dataclass(frozen=True)
class Settings:
    """Process configuration, read once from the environment.

    ``delete_strategy`` (``DELETE_STRATEGY``) picks how ``delete_event`` is
    applied:

    * ``publish`` (default) signs a NIP-09 kind-5 deletion with the relay
      admin key. NIP-09 relays only honour deletions from the event's own
      author, so on a stock relay this removes nothing that another user
      wrote; it suits relays that trust the admin key for deletions.
    * ``banevent`` calls the NIP-86 ``banevent`` method, which is what
      removes other authors' events on a production relay. Set this for
      dashboard deletes against a real relay.
    """

    app_env: str = "production"
    relay_url: str = ""
    management_url: str | None = None
    management_path: str = "/management"
    public_base_url: str | None = None
    allowed_origins: list[str] = field(default_factory=list)
    admin_pubkeys: list[str] = field(default_factory=list)
    moderation_service_url: str = DEFAULT_MODERATION_SERVICE_URL
    realness_api_url: str = DEFAULT_REALNESS_API_URL
    summary_model: str = DEFAULT_SUMMARY_MODEL
    delete_strategy: str = "publish"
    verify_delay_seconds: float = 1.0
    fanout_concurrency: int = 4
    fanout_event_limit: int = 100
    relay_rpc_timeout_seconds: float = 15.0
    publish_timeout_seconds: float = 10.0
    query_timeout_seconds: float = 5.0
    check_result_ttl_seconds: float = 30.0
    zendesk_subdomain: str | None = None
    zendesk_email: str | None = None
    zendesk_mobile_jwt_kid: str | None = None
    zendesk_field_action_status: int | None = None
    zendesk_field_action_requested: int | None = None

    # Secrets
    nostr_nsec: Credential | None = None
    zendesk_jwt_secret: Credential | None = None
    zendesk_webhook_secret: Credential | None = None
    zendesk_parse_report_secret: Credential | None = None
    zendesk_mobile_jwt_secret: Credential | None = None
    zendesk_api_token: Credential | None = None
    cf_access_client_id: Credential | None = None
    cf_access_client_secret: Credential | None = None
    anthropic_api_key: Credential | None = None

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


def _int_or_none(name: str) -> int | None:
    raw = os.getenv(name)
    return int(raw) if raw and raw.strip() else None


def load_settings() -> Settings:
    """Build :class:`Settings` from the current environment."""
    strategy = os.getenv("DELETE_STRATEGY", "publish").strip().lower()
    if strategy not in {"publish", "banevent"}:
        raise ValueError(f"DELETE_STRATEGY must be 'publish' or 'banevent', got {strategy!r}")

    return Settings(
        app_env=os.getenv("APP_ENV", APP_ENV),
        relay_url=os.getenv("RELAY_URL", ""),
        management_url=os.getenv("MANAGEMENT_URL") or None,
        management_path=os.getenv("MANAGEMENT_PATH", "/management"),
        public_base_url=os.getenv("PUBLIC_BASE_URL") or None,
        allowed_origins=_collect_origins(),
        admin_pubkeys=[normalize_pubkey(pk) for pk in split_csv(os.getenv("ADMIN_PUBKEYS"))],
        moderation_service_url=os.getenv("MODERATION_SERVICE_URL") or DEFAULT_MODERATION_SERVICE_URL,
        realness_api_url=(os.getenv("REALNESS_API_URL") or DEFAULT_REALNESS_API_URL).rstrip("/"),
        summary_model=os.getenv("SUMMARY_MODEL") or DEFAULT_SUMMARY_MODEL,
        delete_strategy=strategy,
        verify_delay_seconds=get_env_float("VERIFY_DELAY_SECONDS", 1.0),
        fanout_concurrency=max(1, int(get_env_float("FANOUT_CONCURRENCY", 4))),
        fanout_event_limit=int(get_env_float("FANOUT_EVENT_LIMIT", 100)),
        relay_rpc_timeout_seconds=get_env_float("RELAY_RPC_TIMEOUT_SECONDS", 15.0),
        publish_timeout_seconds=get_env_float("PUBLISH_TIMEOUT_SECONDS", 10.0),
        query_timeout_seconds=get_env_float("QUERY_TIMEOUT_SECONDS", 5.0),
        check_result_ttl_seconds=get_env_float("CHECK_RESULT_TTL_SECONDS", 30.0),
        zendesk_subdomain=os.getenv("ZENDESK_SUBDOMAIN") or None,
        zendesk_email=os.getenv("ZENDESK_EMAIL") or None,
        zendesk_mobile_jwt_kid=os.getenv("ZENDESK_MOBILE_JWT_KID") or None,
        zendesk_field_action_status=_int_or_none("ZENDESK_FIELD_ACTION_STATUS"),
        zendesk_field_action_requested=_int_or_none("ZENDESK_FIELD_ACTION_REQUESTED"),
        nostr_nsec=credential_from_env("NOSTR_NSEC"),
        zendesk_jwt_secret=credential_from_env("ZENDESK_JWT_SECRET"),
        zendesk_webhook_secret=credential_from_env("ZENDESK_WEBHOOK_SECRET"),
        zendesk_parse_report_secret=credential_from_env("ZENDESK_PARSE_REPORT_SECRET"),
        zendesk_mobile_jwt_secret=credential_from_env("ZENDESK_MOBILE_JWT_SECRET"),
        zendesk_api_token=credential_from_env("ZENDESK_API_TOKEN"),
        cf_access_client_id=credential_from_env("CF_ACCESS_CLIENT_ID"),
        cf_access_client_secret=credential_from_env("CF_ACCESS_CLIENT_SECRET"),
        anthropic_api_key=credential_from_env("ANTHROPIC_API_KEY"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """FastAPI dependency – cached process-wide, override in tests."""
    return load_settings()
