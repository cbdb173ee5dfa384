"""Top-level package for the Nostr relay admin control-plane FastAPI application."""

__all__ = [
    "APP_ENV",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "DEFAULT_MODERATION_SERVICE_URL",
    "DEFAULT_REALNESS_API_URL",
    "DEFAULT_SUMMARY_MODEL",
    "NIP98_KIND",
]

from dotenv import load_dotenv
import os
load_dotenv()

# Audit store (Supabase / PostgREST). Checked lazily by the dependency so the
# unauthenticated routes still boot without it.
SUPABASE_URL = os.environ.get("SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_KEY")

APP_ENV = os.getenv("APP_ENV", "production")

# NIP-98 HTTP auth event kind (also used to sign outbound NIP-86 calls)
NIP98_KIND = 27235

DEFAULT_MODERATION_SERVICE_URL = "https://moderation.admin.divine.video"
DEFAULT_REALNESS_API_URL = "https://realness.admin.divine.video"
DEFAULT_SUMMARY_MODEL = "claude-3-haiku-20240307"
