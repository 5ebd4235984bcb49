"""
OAuth 1.0a request signing (HMAC-SHA1) and OAuth 2.0 bearer headers.

Twitter's v1.1 media upload endpoints only accept OAuth 1.0a user context,
so every upload request is signed here. Signing is a pure function of its
inputs: nonce and timestamp can be passed in to reproduce a signature.

Signature steps (RFC 5849 section 3.4):
1. Collect OAuth params + query params + form-body params
2. Percent-encode names and values (RFC 3986), sort by name then value
3. Base string: METHOD&encoded(base URL)&encoded(normalized params)
4. Key: encoded(consumer_secret)&encoded(token_secret)
5. HMAC-SHA1, base64

Documentation: https://developer.twitter.com/en/docs/authentication/oauth-1-0a
"""

import base64
import hashlib
import hmac
import secrets
import time
import urllib.parse
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from loguru import logger

ParamSource = Union[Mapping[str, object], Iterable[Tuple[str, object]], None]


def generate_oauth_nonce() -> str:
    """
    Generate a random nonce for OAuth requests.

    Returns:
        32-character random hex string
    """
    return secrets.token_hex(16)


def generate_oauth_timestamp() -> str:
    """
    Generate current Unix timestamp for OAuth requests.

    Returns:
        Current timestamp as string
    """
    return str(int(time.time()))


def percent_encode(value) -> str:
    """
    Percent-encode a string as RFC 5849 requires.

    OAuth requires specific encoding rules:
    - Letters, digits, '-', '.', '_', '~' are not encoded
    - All other characters are percent-encoded
    - Spaces are encoded as %20 (not +)

    Args:
        value: String to encode

    Returns:
        Percent-encoded string
    """
    return urllib.parse.quote(str(value), safe="~")


def _as_pairs(params: ParamSource) -> List[Tuple[str, str]]:
    if not params:
        return []
    items = params.items() if isinstance(params, Mapping) else params
    return [(str(k), str(v)) for k, v in items]


def normalize_url(url: str) -> Tuple[str, List[Tuple[str, str]]]:
    """
    Split a request URL into its signature base URL and its query params.

    The base URL has a lowercase scheme and host, no default port, no query
    and no fragment.
    """
    parts = urllib.parse.urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        host = f"{host}:{port}"
    base_url = urllib.parse.urlunsplit((scheme, host, parts.path or "/", "", ""))
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    return base_url, query


def normalize_parameters(params: Iterable[Tuple[str, str]]) -> str:
    """Encode every pair, sort by encoded name then value and join with '&'."""
    encoded = sorted((percent_encode(k), percent_encode(v)) for k, v in params)
    return "&".join(f"{k}={v}" for k, v in encoded)


def generate_signature_base_string(method: str, url: str, params: ParamSource) -> str:
    """
    Generate OAuth signature base string.

    Format: METHOD&URL&PARAMETERS

    Args:
        method: HTTP method (GET, POST, etc.)
        url: Request URL; any query string is folded into the parameters
        params: OAuth params plus form-encoded body params

    Returns:
        Signature base string
    """
    base_url, query = normalize_url(url)
    param_string = normalize_parameters(_as_pairs(params) + query)
    return f"{method.upper()}&{percent_encode(base_url)}&{percent_encode(param_string)}"


def generate_signing_key(consumer_secret: str, token_secret: str = "") -> str:
    """
    Generate OAuth signing key.

    Format: CONSUMER_SECRET&TOKEN_SECRET
    """
    return f"{percent_encode(consumer_secret)}&{percent_encode(token_secret or '')}"


def generate_oauth_signature(
    method: str, url: str, params: ParamSource, consumer_secret: str, token_secret: str = ""
) -> str:
    """
    Generate OAuth 1.0a signature using HMAC-SHA1.

    Args:
        method: HTTP method (GET, POST)
        url: Request URL
        params: All parameters (OAuth + request)
        consumer_secret: App consumer secret
        token_secret: User token secret

    Returns:
        Base64-encoded signature
    """
    base_string = generate_signature_base_string(method, url, params)
    signing_key = generate_signing_key(consumer_secret, token_secret)

    signature_bytes = hmac.new(
        signing_key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha1
    ).digest()

    return base64.b64encode(signature_bytes).decode("utf-8")


def generate_oauth_header(
    method: str,
    url: str,
    consumer_key: str,
    consumer_secret: str,
    token: Optional[str] = None,
    token_secret: str = "",
    params: ParamSource = None,
    nonce: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> str:
    """
    Generate complete OAuth Authorization header.

    Only form-encoded body params belong in ``params``; multipart bodies are
    not part of the signature, and query params are read from ``url``.

    Args:
        method: HTTP method
        url: Request URL (query string included)
        consumer_key: App consumer key
        consumer_secret: App consumer secret
        token: User access token
        token_secret: User access token secret
        params: Form-encoded request parameters
        nonce: Fixed nonce (generated when omitted)
        timestamp: Fixed Unix timestamp (current time when omitted)

    Returns:
        Authorization header value: ``OAuth key="value", ...``
    """
    oauth_params: Dict[str, str] = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": nonce or generate_oauth_nonce(),
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": timestamp or generate_oauth_timestamp(),
        "oauth_version": "1.0",
    }
    if token:
        oauth_params["oauth_token"] = token

    all_params = list(oauth_params.items()) + _as_pairs(params)
    oauth_params["oauth_signature"] = generate_oauth_signature(
        method, url, all_params, consumer_secret, token_secret
    )

    header_params = ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(oauth_params.items())
    )
    logger.debug(f"Signed {method.upper()} request for {normalize_url(url)[0]}")
    return f"OAuth {header_params}"


def bearer_headers(access_token: str, content_type: Optional[str] = "application/json") -> Dict[str, str]:
    """OAuth 2.0 bearer headers for JSON APIs."""
    headers = {"Authorization": f"Bearer {access_token}"}
    if content_type:
        headers["Content-Type"] = content_type
    return headers
