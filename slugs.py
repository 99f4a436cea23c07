import re
from typing import Optional

from errors import ValidationError

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def derive_slug(text: str) -> str:
    """Lowercase, collapse every run outside [a-z0-9] to "-", trim dashes."""
    return _NON_SLUG.sub("-", text.lower().strip()).strip("-")


def resolve_slug(
    source: str,
    previous_source: Optional[str],
    current: Optional[str],
    override: Optional[str],
    field: str = "slug",
) -> str:
    """Pick the slug (or code) a write should persist.

    A non-empty override always wins and is normalized. Without one the value
    is re-derived when the source field is new or changed, otherwise the
    current value is kept.
    """
    if override is not None and override.strip():
        slug = derive_slug(override)
    elif previous_source is None or source != previous_source or not current:
        slug = derive_slug(source)
    else:
        slug = current
    if not slug:
        raise ValidationError(f"{field} cannot be derived from {source!r}", field=field, code="SlugRequired")
    return slug
