"""
Scalar coercion for stored ticket fields.

Older documents wrap every value as {"stringValue": "..."}; newer ones store
the plain string. Readers call scalar() once at the edge.
"""


def scalar(value, default=""):
    """Return the plain string behind a stored value, or default."""
    if value is None:
        return default
    if isinstance(value, dict):
        inner = value.get("stringValue")
        return inner if isinstance(inner, str) else default
    if isinstance(value, str):
        return value
    return str(value)


def scalar_list(value):
    """Coerce a stored list (or single value) into a list of plain strings."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [s for s in (scalar(v) for v in value) if s]
    single = scalar(value)
    return [single] if single else []
