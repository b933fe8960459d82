import re

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def validate_identifier(name: str) -> str:
    """Validate a table identifier (optionally ``schema.table``) before it is
    interpolated into a ``SELECT``.

    Returns the stripped identifier; raises ValueError if invalid.
    """
    if name is None:
        raise ValueError("identifier is None")
    s = str(name).strip()
    if not s or len(s) > 128:
        raise ValueError("identifier empty or too long")
    if not _IDENT_RE.match(s):
        raise ValueError(f"invalid identifier: {name!r}")
    return s
