from __future__ import annotations

from typing import Any, Dict


def merge_raw(existing: Any, **additions: Any) -> Dict[str, Any]:
    """Return a new audit document with ``additions`` layered over ``existing``.

    Keys already present are kept unless re-supplied. A non-mapping prior value
    (for example the bare register response) is preserved under ``register``.
    A fresh dict is always returned so the JSON column registers the change.
    """

    if isinstance(existing, dict):
        base: Dict[str, Any] = dict(existing)
    elif existing is None:
        base = {}
    else:
        base = {"register": existing}
    base.update({key: value for key, value in additions.items() if value is not None})
    return base
