"""Credential scrubbing for anything that may end up in a log line or error.

Driver errors routinely echo the request they failed on, which for remote
sources means a URL that may carry ``user:password@``. Every step passes
driver-supplied text through :func:`sanitize_error_message` before storing it
in the state bag or handing it to the UI.
"""

import re
from collections.abc import Iterable
from urllib.parse import urlsplit, urlunsplit


INVALID_URL = "[invalid URL]"
CREDENTIALS_REMOVED = "[credentials removed]"

_EMBEDDED_URL = re.compile(r"https?://[^:/\s]+:[^@\s]+@[^\s]+")
_CREDENTIAL_PATTERN = re.compile(r"(?<![A-Za-z])(?:password|pwd|pass|secret|token)[=:]\s*[^\s]+")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _is_malformed(raw: str) -> bool:
    if any(ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in raw):
        return True
    return _BAD_ESCAPE.search(raw) is not None


def _hides_userinfo(url: str, netloc: str) -> bool:
    # An unencoded "/", "?" or "#" in a password ends the authority early, so the
    # userinfo lands in the path and the netloc looks like host:port.
    if "@" in netloc or ":" not in netloc:
        return False
    rest = url.split("://", 1)[1][len(netloc) :]
    return "@" in rest


def sanitize_url(url: str) -> str:
    if _is_malformed(url) or url.startswith("://"):
        return INVALID_URL
    try:
        parts = urlsplit(url)
        # Port access validates the authority component.
        parts.port
    except ValueError:
        return INVALID_URL
    if not parts.scheme:
        return INVALID_URL

    userinfo, sep, hostport = parts.netloc.rpartition("@")
    if not sep:
        if _hides_userinfo(url, parts.netloc):
            return INVALID_URL
        return url
    username, has_password, _ = userinfo.partition(":")
    if not has_password:
        return url
    netloc = f"{username}@{hostport}" if username else hostport
    return urlunsplit(parts._replace(netloc=netloc))


def sanitize_urls_in_text(text: str) -> str:
    return _EMBEDDED_URL.sub(lambda match: sanitize_url(match.group(0)), text)


def sanitize_credential_patterns(text: str) -> str:
    return _CREDENTIAL_PATTERN.sub(CREDENTIALS_REMOVED, text)


def scrub_secrets(text: str, secrets: Iterable[str | None]) -> str:
    values = sorted({s for s in secrets if s}, key=len, reverse=True)
    if not values:
        return text
    # Existing markers are left alone so repeated scrubbing is stable.
    segments = text.split(CREDENTIALS_REMOVED)
    for value in values:
        segments = [part for segment in segments for part in segment.split(value)]
    return CREDENTIALS_REMOVED.join(segments)


def sanitize_error_message(message: str, secrets: Iterable[str | None] = ()) -> str:
    sanitized = sanitize_urls_in_text(message)
    sanitized = sanitize_credential_patterns(sanitized)
    return scrub_secrets(sanitized, secrets)


def sanitize_error(exc: BaseException, secrets: Iterable[str | None] = ()) -> str:
    return sanitize_error_message(str(exc) or exc.__class__.__name__, secrets)
