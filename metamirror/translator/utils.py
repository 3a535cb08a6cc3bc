import re
from typing import Optional

LAST_DIR_PATTERN = re.compile(r".*/([^/?]+).*")


def _path_floor(url: str) -> int:
    """Index of the first path separator we are allowed to cut at."""
    scheme = url.find("://")
    if scheme < 0:
        return 1
    authority_end = url.find("/", scheme + 3)
    return authority_end if authority_end >= 0 else len(url) + 1


def reduce_url_by(url: str, level: int) -> str:
    """Strip ``level`` trailing path segments from ``url``.

    A trailing separator is ignored. The ``scheme://authority`` part is never
    cut, so reducing past the root returns just the namespace.
    """
    rtn = url.strip()
    while len(rtn) > 1 and rtn.endswith("/"):
        rtn = rtn[:-1]
    floor = _path_floor(rtn)
    for _ in range(max(level, 0)):
        idx = rtn.rfind("/")
        if idx < floor:
            break
        rtn = rtn[:idx]
    return rtn


def last_dir_from_url(url: str) -> Optional[str]:
    match = LAST_DIR_PATTERN.match(url)
    return match.group(1) if match else None


def append_last_dir(target: str, source: str) -> str:
    """Append the last directory of ``source`` to ``target`` unless ``target`` ends with '/'."""
    if target.endswith("/"):
        return target
    last_dir = last_dir_from_url(source)
    if not last_dir:
        return target
    return f"{target}/{last_dir}"


def dir_depth(path: str) -> int:
    return path.count("/")
