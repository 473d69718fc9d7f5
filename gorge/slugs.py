"""Validation of module and release slugs."""

import re

_MODULE_SLUG = re.compile(r"[a-zA-Z0-9]+[-/][a-z][a-z0-9_]*")
_RELEASE_SLUG = re.compile(
    r"[a-zA-Z0-9]+[-/][a-z][a-z0-9_]*[-/][0-9]+\.[0-9]+\.[0-9]+(?:[\-+].+)?"
)


def check_module_slug(slug: str) -> bool:
    """Return True if *slug* looks like ``owner-name`` or ``owner/name``.

    The owner is alphanumeric; the name starts with a lowercase letter and
    continues with lowercase letters, digits and underscores.
    """
    return _MODULE_SLUG.fullmatch(slug) is not None


def check_release_slug(slug: str) -> bool:
    """Return True if *slug* is a module slug followed by a semantic version.

    The version may carry a pre-release or build suffix introduced by
    ``-`` or ``+``.
    """
    return _RELEASE_SLUG.fullmatch(slug) is not None