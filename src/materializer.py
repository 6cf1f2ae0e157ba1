"""Turn a namespace snapshot into the file content written to disk.

Properties namespaces become a flat INI document, every other namespace is
written as the opaque blob stored under the `content` key.
"""

import logging

from src.constants import CONTENT_KEY, NAMESPACE_SUFFIXES, PROPERTIES_SUFFIX

logger = logging.getLogger(__name__)

_NAMED_ESCAPES = {
    "\\": "\\\\",
    "\0": "\\0",
    "\a": "\\a",
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\v": "\\v",
    "\f": "\\f",
    "\r": "\\r",
}


def canonicalize_namespace(namespace_name: str) -> str:
    """Map a namespace name to the filename it is stored under.

    Names with a known format suffix are kept, bare names are properties
    namespaces and get the `.properties` suffix.
    """
    if namespace_name.endswith(NAMESPACE_SUFFIXES):
        return namespace_name
    return namespace_name + PROPERTIES_SUFFIX


def escape_ini(text: str) -> str:
    """Escape backslashes and control characters for an INI key or value."""
    escaped = []
    for char in text:
        if char in _NAMED_ESCAPES:
            escaped.append(_NAMED_ESCAPES[char])
        elif char < " " or char == "\x7f":
            escaped.append(f"\\x{ord(char):04x}")
        else:
            escaped.append(char)
    return "".join(escaped)


def render_properties(configurations: dict[str, str]) -> str:
    """Render configurations as an INI document with one unnamed section.

    Keys are sorted so the same configurations always give the same text.
    Only backslashes and control characters are escaped: keys containing
    `=` or `:` and values with leading or trailing whitespace are written
    as is and do not read back unchanged with `configparser`.

    Args:
        configurations: Flat key/value configuration map.

    Returns:
        The INI document, one `key = value` line per entry.
    """
    return "".join(
        f"{escape_ini(key)} = {escape_ini(value)}\n"
        for key, value in sorted(configurations.items())
    )


def materialize(
    namespace_name: str, configurations: dict[str, str]
) -> tuple[str, bytes]:
    """Produce the filename and content for a namespace snapshot.

    Args:
        namespace_name: Name of the namespace as known by the config service.
        configurations: Key/value configuration map of the namespace.

    Returns:
        Tuple of (filename, content).
    """
    filename = canonicalize_namespace(namespace_name)
    if filename.endswith(PROPERTIES_SUFFIX):
        content = render_properties(configurations).encode("utf-8")
    else:
        if CONTENT_KEY not in configurations:
            logger.debug(
                "Namespace '%s' has no '%s' key, writing empty file",
                namespace_name,
                CONTENT_KEY,
            )
        content = configurations.get(CONTENT_KEY, "").encode("utf-8")
    return filename, content
