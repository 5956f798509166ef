"""Centralized constants for LogzAI deployments."""

# Readiness polling
READINESS_MAX_ATTEMPTS = 10
READINESS_INTERVAL_SECONDS = 2.0
PROBE_TIMEOUT_SECONDS = 3.0

# Service replacement
POST_START_SETTLE_SECONDS = 3.0
COMMAND_TIMEOUT_SECONDS = 300

# Files in the installation directory
COMPOSE_FILE = "docker-compose.yml"
ENV_FILE = ".env"
GATEWAY_CONFIG = "gateway.conf"
GATEWAY_HTTPS_TEMPLATE = "gateway-https.conf"
BACKUP_SUFFIX = ".backup"

# Reverse gateway
GATEWAY_CONTAINER = "logzai-gateway"
GATEWAY_SERVICE = "logzai-gateway"
DOMAIN_PLACEHOLDER = "${DOMAIN}"
LETSENCRYPT_VOLUME = "/etc/letsencrypt:/etc/letsencrypt:ro"

# Public address detection, tried in order
PUBLIC_IP_URLS = (
    "https://ifconfig.io",
    "https://icanhazip.com",
    "https://ipecho.net/plain",
)
