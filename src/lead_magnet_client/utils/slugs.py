import re
import secrets
from uuid import uuid4

_NON_WORD = re.compile(r"[^\w\s-]")
_SPACES = re.compile(r"\s+")


def new_download_slug() -> str:
    return uuid4().hex


def page_slug(title: str) -> str:
    """slugified title (max 30 chars) plus an 8 char random suffix"""
    base = _SPACES.sub("-", _NON_WORD.sub("", title.lower()).strip())[:30].strip("-") or "page"
    return f"{base}-{secrets.token_hex(4)}"
