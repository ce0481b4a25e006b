"""Webhook signature verification.

GitHub signs every delivery with HMAC-SHA256 over the raw request body and
sends the result as ``X-Hub-Signature-256: sha256=<hex>``. Verification must
happen on the exact bytes received, before the body is parsed.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature GitHub would send for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def timing_safe_equal(a: str, b: str) -> bool:
    """Compare two strings without short-circuiting on the first mismatch.

    Every character pair is visited and folded into one accumulator, so the
    running time depends only on the length, never on where the strings
    first differ.
    """
    if len(a) != len(b):
        return False
    result = 0
    for x, y in zip(a, b):
        result |= ord(x) ^ ord(y)
    return result == 0


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Return True only if ``signature`` is the HMAC of ``body`` under ``secret``.

    Fails closed: a missing secret, a missing or empty header, or a header
    without the ``sha256=`` prefix is rejected without computing anything.
    """
    if not secret or not signature:
        return False
    if not signature.startswith(SIGNATURE_PREFIX) or not signature.isascii():
        return False
    return timing_safe_equal(compute_signature(body, secret), signature)
