import re

_URL = re.compile(r"https?://\S+")
_WHITESPACE = re.compile(r"\s+")


def normalize_post(text: str) -> str:
    """Drop links and fold the post onto one line so it fits a single prompt block."""
    text = _URL.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()
