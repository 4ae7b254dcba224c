"""Robot request signing for DingTalk session webhooks.

The platform expects ``timestamp`` and ``sign`` query parameters on every
call, where ``sign`` is the URL-encoded base64 HMAC-SHA256 of
``"<timestamp>\\n<secret>"`` keyed by the secret itself.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
import urllib.parse

from src.dingtalk.errors import InvalidConfigError
from src.models import SignatureResult


def now_millis() -> int:
    return int(time.time() * 1000)


def sign(secret_key: str, timestamp: int | None = None) -> SignatureResult:
    """Compute the signature for ``secret_key`` at ``timestamp`` (epoch ms).

    ``timestamp`` defaults to the current wall clock; pass it explicitly for
    reproducible signatures.
    """
    if not secret_key:
        raise InvalidConfigError("[dingtalk-sign] not found secretKey.")

    ts = now_millis() if timestamp is None else timestamp
    message = f"{ts}\n{secret_key}"
    digest = hmac.new(
        secret_key.encode(), message.encode(), hashlib.sha256,
    ).digest()
    encoded = base64.b64encode(digest).decode()
    return SignatureResult(signature=urllib.parse.quote(encoded, safe=""), timestamp=ts)


def signed_url(endpoint: str, signature: SignatureResult) -> str:
    """Append ``timestamp``/``sign`` to ``endpoint``, keeping any existing query."""
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}timestamp={signature.timestamp}&sign={signature.signature}"
