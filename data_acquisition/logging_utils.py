"""
Secure logging helpers.

Provider URLs and headers routinely carry API keys (query string or header).
Everything that ends up in a log line or an ErrorEvent goes through these
helpers first.
"""

from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


MASK = "***"

# Header names that should be masked
SENSITIVE_HEADERS = {
    "authorization",
    "x-api-key",
    "x-cg-pro-api-key",
    "x-cg-demo-api-key",
    "x-cmc_pro_api_key",
    "x-mbx-apikey",
    "api-key",
}

# Parameter names that should be masked
SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "key",
    "secret",
    "token",
    "access_token",
    "signature",
}


def mask_value(value: Optional[str], visible: int = 4) -> str:
    """Keep the first `visible` characters of a secret."""
    if not value:
        return ""
    if len(value) <= visible:
        return MASK
    return f"{value[:visible]}{MASK}"


def mask_headers(headers: Optional[Mapping[str, str]]) -> dict[str, str]:
    if not headers:
        return {}
    return {
        name: mask_value(value) if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


def mask_params(params: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    if not params:
        return {}
    return {
        name: mask_value(str(value)) if name.lower() in SENSITIVE_PARAMS else value
        for name, value in params.items()
    }


def mask_url(url: str) -> str:
    """Mask sensitive query parameters embedded in a URL."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [
        (name, mask_value(value) if name.lower() in SENSITIVE_PARAMS else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, safe="*")))
