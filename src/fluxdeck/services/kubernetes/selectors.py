"""Label selector matching.

Pure functions; ``None`` is treated as an empty map throughout.
"""

from __future__ import annotations

from collections.abc import Mapping


def selectors_equal(
    a: Mapping[str, str] | None,
    b: Mapping[str, str] | None,
) -> bool:
    """Whether two selectors have identical keys and values.

    Used to pair a Deployment (``spec.selector.matchLabels``) with a Service
    (``spec.selector``).
    """
    return dict(a or {}) == dict(b or {})


def labels_satisfy_selector(
    labels: Mapping[str, str] | None,
    selector: Mapping[str, str] | None,
) -> bool:
    """Whether every selector key is present in ``labels`` with an equal value.

    An empty selector matches everything.
    """
    labels = labels or {}
    return all(labels.get(key) == value for key, value in (selector or {}).items())


def label_selector_string(selector: Mapping[str, str] | None) -> str:
    """Render a selector in ``k=v,k2=v2`` form for ``label_selector`` params."""
    return ",".join(f"{key}={value}" for key, value in sorted((selector or {}).items()))
