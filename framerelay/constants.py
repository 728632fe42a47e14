"""Shared constants for FrameRelay.

Timeouts, redirect bounds and the outbound browser header set used across
modules are defined here. Other modules import these rather than repeating literals.
"""

# ─── Relay endpoint ───────────────────────────────────────────────────────────

# Path of the relay endpoint. Remapped redirects point back at this path.
RELAY_PATH: str = "/proxy"

# Query parameter carrying the percent-encoded target URL.
TARGET_PARAM: str = "url"

# ─── Upstream fetch ───────────────────────────────────────────────────────────

# Upper bound on time-to-headers for a single upstream fetch.
# On expiry the fetch is cancelled and the caller receives HTTP 504.
DEFAULT_UPSTREAM_TIMEOUT_MS: int = 15_000

# Outbound headers attached to every upstream request. Many sites serve degraded
# or blocked content to clients that do not look like an ordinary browser.
BROWSER_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

# Shared client pool sizing. Each inbound request issues exactly one upstream
# request; the pool only bounds how many may be open at once.
POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 20
POOL_KEEPALIVE_EXPIRY: float = 5.0  # seconds

# ─── Redirect chains ──────────────────────────────────────────────────────────

# Maximum number of remapped redirects in one chain before TooManyRedirects.
# 0 disables tracking.
DEFAULT_MAX_REDIRECTS: int = 20

# Hop-token cookie: name prefix and lifetime. The cookie only has to survive the
# browser's immediate follow-up request for the remapped Location.
HOP_COOKIE_PREFIX: str = "relay_hops_"
HOP_COOKIE_MAX_AGE: int = 30  # seconds

# ─── Server binding ───────────────────────────────────────────────────────────

DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = 3000
