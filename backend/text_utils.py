"""Low-level text helpers shared by the chat, publishing and content modules.

No dependency on schemas, models, or any other project module.
"""

import re


def normalize_whitespace(text: str) -> str:
    return " ".join((text or "").split()).strip()


def strip_markdown(text: str) -> str:
    """Remove chat markdown so social networks receive plain text."""
    out = text or ""
    out = re.sub(r"\*\*\*(.*?)\*\*\*", r"\1", out)
    out = re.sub(r"\*\*(.*?)\*\*", r"\1", out)
    out = re.sub(r"\*(.*?)\*", r"\1", out)
    out = re.sub(r"~~(.*?)~~", r"\1", out)
    out = re.sub(r"`(.*?)`", r"\1", out)
    out = re.sub(r"^#{1,6}\s+", "", out, flags=re.MULTILINE)
    out = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", out)
    out = re.sub(r'^"|"$', "", out, flags=re.MULTILINE)
    out = out.replace("“", '"').replace("”", '"')
    out = out.replace("‘", "'").replace("’", "'")
    return out.replace('\\"', '"')


def truncate_text(text: str, limit: int, suffix: str = "...") -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[: max(0, limit - len(suffix))] + suffix
