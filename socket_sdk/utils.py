"""Helpers for building requests and formatting API errors."""

from collections.abc import Iterable, Mapping
from urllib.parse import quote

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "proxy-authorization",
        "www-authenticate",
        "proxy-authenticate",
    }
)

# API expects snake_case for these keys
_QUERY_KEY_ALIASES = {
    "defaultBranch": "default_branch",
    "perPage": "per_page",
}

API_TOKENS_URL = "https://socket.dev/dashboard/settings/api-tokens"
DASHBOARD_URL = "https://socket.dev/dashboard"
CONTACT_URL = "https://socket.dev/contact"


def encode_segment(value: object) -> str:
    """URL-encode one path segment, including any slashes."""
    return quote(str(value), safe="")


def build_path(*segments: object) -> str:
    """Join path segments, encoding each one.

    build_path("orgs", "my org", "repos") -> "orgs/my%20org/repos"
    """
    return "/".join(encode_segment(s) for s in segments)


def query_to_params(params: Mapping | Iterable[tuple[str, object]] | None) -> dict[str, str]:
    """Normalize query parameters for the API.

    Renames camelCase keys the API knows in snake_case and drops empty
    values. ``0`` and ``False`` are kept.
    """
    if not params:
        return {}
    items = params.items() if isinstance(params, Mapping) else params
    normalized: dict[str, str] = {}
    for key, value in items:
        key = _QUERY_KEY_ALIASES.get(key, key)
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            value = str(value).lower()
        normalized[key] = str(value)
    return normalized


def sanitize_headers(headers: Mapping | None) -> dict[str, str] | None:
    """Copy headers for logging with credentials redacted."""
    if headers is None:
        return None
    sanitized = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, (list, tuple)):
            sanitized[key] = ", ".join(str(v) for v in value)
        else:
            sanitized[key] = str(value)
    return sanitized


def api_error_guidance(status: int, retry_after: str | None = None) -> str | None:
    """Actionable hints for common client errors."""
    if status == 400:
        lines = [
            "→ Bad request. Invalid parameters or request body.",
            "→ Check: All required parameters are provided and correctly formatted.",
            "→ Verify: Package URLs (PURLs) follow correct format.",
        ]
    elif status == 401:
        lines = [
            "→ Authentication failed. API token is invalid or expired.",
            "→ Check: Your API token is correct and active.",
            f"→ Generate a new token at: {API_TOKENS_URL}",
        ]
    elif status == 403:
        lines = [
            "→ Authorization failed. Insufficient permissions.",
            "→ Check: Your API token has required permissions for this operation.",
            "→ Check: You have access to the specified organization/repository.",
            f"→ Verify: Organization settings at {DASHBOARD_URL}",
        ]
    elif status == 404:
        lines = [
            "→ Resource not found.",
            "→ Verify: Package name, version, or resource ID is correct.",
            "→ Check: Organization or repository exists and is accessible.",
        ]
    elif status == 413:
        lines = [
            "→ Payload too large. Request exceeds size limits.",
            "→ Try: Reduce the number of files or packages in a single request.",
            "→ Try: Use batch operations with smaller chunks.",
        ]
    elif status == 429:
        retry_msg = f"Retry after {retry_after} seconds." if retry_after else "Wait before retrying."
        lines = [
            "→ Rate limit exceeded. Too many requests.",
            f"→ {retry_msg}",
            "→ Try: Enable client retries or reduce request concurrency.",
            f"→ Contact support to increase rate limits: {CONTACT_URL}",
        ]
    else:
        return None
    return "\n".join(lines)


def filter_redundant_cause(message: str, cause: str | None) -> str | None:
    """Drop a cause that only repeats the error message."""
    if not cause:
        return None
    norm_message = " ".join(message.lower().split())
    norm_cause = " ".join(cause.lower().split())
    if not norm_cause or norm_cause in norm_message:
        return None
    return cause
