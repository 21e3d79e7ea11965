"""domainctl package bootstrap.

Exposes version metadata plus the two library entry points most callers need:
:func:`validate_domain` and the :func:`add_domain` coroutine.
"""
from __future__ import annotations

__all__ = ["__version__", "add_domain", "get_version", "validate_domain"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__


from .provisioner import add_domain  # noqa: E402
from .validation import validate_domain  # noqa: E402
