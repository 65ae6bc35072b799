"""
CDN invalidation path reduction.

CloudFront allows 1000 free invalidation paths per month; after that they cost
money. The changed keys of a deploy are therefore reduced to a short list of
paths and wildcard patterns, falling back to invalidating everything.
For path rules, see
https://docs.aws.amazon.com/AmazonCloudFront/latest/DeveloperGuide/Invalidation.html
"""
import posixpath
from typing import Iterable, List


DEFAULT_INVALIDATION_THRESHOLD = 8

_UNRESERVED = frozenset(b"$-_.+!*'(),")
_RESERVED = frozenset(b'/?:@=&')
_HEX = '0123456789ABCDEF'


def _should_escape(c: int) -> bool:
    """RFC 1738 section 2.2, applied to a single byte."""
    if ord('A') <= c <= ord('Z') or ord('a') <= c <= ord('z') or ord('0') <= c <= ord('9'):
        return False
    if c in _UNRESERVED:
        return False
    if c in _RESERVED:
        return c == ord('?')
    # Everything else must be escaped.
    return True


def path_escape_rfc1738(path: str) -> str:
    """Percent-encode ``path`` so it can be used as a URL path in an invalidation."""
    out = []
    for c in path.encode('utf-8'):
        if _should_escape(c):
            out.append('%' + _HEX[c >> 4] + _HEX[c & 15])
        else:
            out.append(chr(c))
    return ''.join(out)


def _unique(paths: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for p in paths:
        if p not in seen:
            seen.add(p)
            unique.append(p)
    return unique


def _clean(p: str) -> str:
    return posixpath.normpath('/' + p.lstrip('/'))


def normalize_invalidation_paths(root: str, threshold: int, force: bool, paths: Iterable[str]) -> List[str]:
    """
    Reduce changed paths to at most ``threshold`` invalidation patterns.

    Args:
        root: Web context root of the site, e.g. "/" or "/blog"
        threshold: Maximum number of patterns to return
        force: Invalidate everything under ``root``
        paths: Changed keys, with or without a leading slash

    Returns:
        Sorted distinct paths when few enough, otherwise wildcard patterns
        collapsed by directory level, otherwise a single match-all pattern
    """
    if not root.startswith('/'):
        root = '/' + root

    match_all = posixpath.normpath(posixpath.join(root, '*'))
    clear_all = [match_all]

    if force:
        return clear_all

    normalized = []
    max_levels = 0

    for p in paths:
        p = _clean(p)
        max_levels = max(max_levels, p.count('/'))

        if posixpath.basename(p) == 'index.html':
            # Index pages are served for the directory itself.
            directory = posixpath.dirname(p)
            if not directory.endswith('/'):
                directory += '/'
            normalized.append(directory)
        else:
            normalized.append(p)

    normalized = sorted(_unique(normalized))

    if len(normalized) > threshold:
        for k in range(max_levels, 0, -1):
            for i, p in enumerate(normalized):
                if p.count('/') > k:
                    parts = posixpath.dirname(p).lstrip('/').split('/')
                    normalized[i] = '/' + '/'.join(parts[:len(parts) - k + 1]) + '/*'
            normalized = _unique(normalized)
            if len(normalized) <= threshold:
                break

        if len(normalized) > threshold:
            # Give up.
            return clear_all

    if match_all in normalized:
        return clear_all

    return normalized
