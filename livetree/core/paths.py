"""
Path helpers.

Paths are slash-delimited; the normalized form has a leading slash and no
trailing slash, with `""` denoting the root.
"""

__all__ = [
    "normalize_path",
    "split_path",
    "display_path",
    "join_path",
]


def normalize_path(path: str) -> str:
    """
    Normalize path: add leading slash, strip trailing slash and collapse
    repeated separators. Root is normalized to `""`.
    """
    keys = split_path(path)
    return "".join(f"/{key}" for key in keys)


def split_path(path: str) -> list[str]:
    """
    Split path into its keys, ignoring empty segments.
    """
    return [key for key in path.split("/") if key]


def display_path(path: str) -> str:
    """
    Get path as presented to callbacks, i.e. `"/"` for root.
    """
    return normalize_path(path) or "/"


def join_path(path: str, *keys: str) -> str:
    return normalize_path("/".join([path, *keys]))
