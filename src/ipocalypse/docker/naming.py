"""
Container labels.

Every endpoint container carries the managed label so cleanup can find
leftovers from an interrupted run.
"""

LABEL_MANAGED = "ipocalypse.managed"
LABEL_IMAGE = "ipocalypse.image"


def make_labels(image: str) -> dict[str, str]:
    """Build the label set for an endpoint container."""
    return {
        LABEL_MANAGED: "true",
        LABEL_IMAGE: image,
    }


def managed_filter() -> dict[str, str]:
    """docker-py filter matching every ipocalypse endpoint container."""
    return {"label": f"{LABEL_MANAGED}=true"}
