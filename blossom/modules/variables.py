# blossom/modules/variables.py
"""
variables.py - %{name} placeholder substitution for manifest string fields

Placeholders are resolved against the package Info. Unknown names are an
error rather than being left in place, so a typo can never leak into a
download URL.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, TYPE_CHECKING

from blossom.modules.errors import UnrecognizedPlaceholder

if TYPE_CHECKING:
    from blossom.modules.meta import Info

# compiled once at import, never mutated
VARIABLE_RE = re.compile(r"%\{([A-Za-z0-9_]*)\}")

RESOLVERS: Dict[str, Callable[["Info"], str]] = {
    "version": lambda info: info.version,
}


def has_placeholders(template: str) -> bool:
    return VARIABLE_RE.search(template) is not None


def replace_vars(template: str, info: "Info") -> str:
    """
    Substitute every %{name} in template.

    All names are checked before anything is replaced, so the result is
    either fully substituted or an UnrecognizedPlaceholder is raised.
    Replacement values are not scanned again.
    """
    names = VARIABLE_RE.findall(template)
    if not names:
        return template
    values: Dict[str, str] = {}
    for name in names:
        if name not in values:
            resolver = RESOLVERS.get(name)
            if resolver is None:
                raise UnrecognizedPlaceholder(name, template)
            values[name] = str(resolver(info))
    return VARIABLE_RE.sub(lambda m: values[m.group(1)], template)
