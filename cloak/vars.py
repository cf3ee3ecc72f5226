import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "cloak-proxy")

# Prefix for every route of the service (e.g. when mounted behind an ingress path)
PROXY_BASE_PATH = os.environ.get("PROXY_BASE_PATH", "").rstrip("/")
# Path under which encoded targets are addressed: <PROXY_PREFIX>/<token>
PROXY_PREFIX = os.environ.get("PROXY_PREFIX", PROXY_BASE_PATH + "/p").rstrip("/")
# Public-facing origin of the proxy, used to recognise already proxied links
PUBLIC_URL = os.environ.get("PUBLIC_URL", "").rstrip("/")

PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "30"))
MAX_CONNECTIONS = int(os.environ.get("MAX_CONNECTIONS", "100"))
USER_AGENT = os.getenv("USER_AGENT", "Mozilla/5.0 (compatible; CloakProxy/1.0)")

INJECT_CLIENT_SCRIPT = os.getenv("INJECT_CLIENT_SCRIPT", "true").lower() == "true"

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
