"""URL helpers shared by the redirect-producing handlers."""

from typing import Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def is_safe_return_path(target: Optional[str]) -> bool:
    """Check that ``target`` is a same-origin, site-relative path.

    Rejects absolute URLs, scheme-relative ``//host`` forms, backslash
    variants that browsers normalize into ``//``, and control characters.
    """
    if not target or not isinstance(target, str):
        return False
    if not target.startswith("/") or target.startswith("//"):
        return False
    if "\\" in target:
        return False
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in target):
        return False
    parts = urlsplit(target)
    return not parts.scheme and not parts.netloc


def append_query(url: str, params: Mapping[str, Optional[str]]) -> str:
    """Append ``params`` to ``url``, keeping any query it already carries."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def site_url_for(site_url: str, path: str) -> str:
    """Absolute URL for a validated site-relative ``path``."""
    return f"{site_url.rstrip('/')}{path}"
