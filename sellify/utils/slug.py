"""URL slug helpers"""
import re
import secrets
import string

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def slugify(value: str, max_length: int = 80) -> str:
    """Lowercase, strip anything that is not a letter or digit, join words with '-'"""
    value = (value or "").strip().lower()
    value = re.sub(r"[^a-z0-9\s_-]", "", value)
    value = re.sub(r"[\s_-]+", "-", value).strip("-")
    return value[:max_length].strip("-") or "page"


def random_suffix(length: int = 5) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))
