"""
Local file tree walking and preparation of files for upload.
"""
import gzip
import mimetypes
import os
import unicodedata
from typing import BinaryIO, Iterator, List, Tuple

from loguru import logger

from ..exceptions import LocalFileError
from ..models.config import DeployConfig
from ..models.data_models import FileEntry, LocalFile


# Size that content sniffing looks at.
MAGIC_SIZE = 512

_HTML_SIGNATURES = (
    b'<!DOCTYPE HTML', b'<HTML', b'<HEAD', b'<SCRIPT', b'<IFRAME', b'<H1', b'<DIV',
    b'<FONT', b'<TABLE', b'<A', b'<STYLE', b'<TITLE', b'<B', b'<BODY', b'<BR', b'<P', b'<!--'
)
_MAGIC_SIGNATURES = (
    (b'%PDF-', 'application/pdf'),
    (b'\x89PNG\r\n\x1a\n', 'image/png'),
    (b'\xff\xd8\xff', 'image/jpeg'),
    (b'GIF87a', 'image/gif'),
    (b'GIF89a', 'image/gif'),
    (b'\x1f\x8b\x08', 'application/x-gzip'),
    (b'PK\x03\x04', 'application/zip'),
    (b'wOFF', 'font/woff'),
    (b'wOF2', 'font/woff2')
)
_BINARY_BYTES = frozenset(list(range(0x00, 0x09)) + [0x0B, 0x0E, 0x0F] + list(range(0x10, 0x1B)) + list(range(0x1C, 0x20)))


def detect_content_type(data: bytes) -> str:
    """Guess a content type from the first bytes of a file."""
    peek = data[:MAGIC_SIZE]

    stripped = peek.lstrip(b'\t\n\x0c\r ')
    upper = stripped.upper()
    for sig in _HTML_SIGNATURES:
        if upper.startswith(sig) and len(upper) > len(sig) and upper[len(sig):len(sig) + 1] in (b' ', b'>'):
            return 'text/html; charset=utf-8'
    if stripped.startswith(b'<?xml'):
        return 'text/xml; charset=utf-8'

    for sig, content_type in _MAGIC_SIGNATURES:
        if peek.startswith(sig):
            return content_type

    if not any(b in _BINARY_BYTES for b in peek):
        return 'text/plain; charset=utf-8'
    return 'application/octet-stream'


def content_type_by_extension(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path, strict=False)
    if not content_type:
        return ''
    if content_type.startswith('text/') or content_type in ('application/javascript', 'image/svg+xml'):
        content_type += '; charset=utf-8'
    return content_type


class OSLocalStore:
    """Filesystem primitives used by the walker."""

    def walk(self, root: str) -> Iterator[Tuple[str, List[str], List[str]]]:
        """Walk top-down; callers may prune the directory list in place."""
        def _raise(error: OSError):
            raise error

        return os.walk(root, onerror=_raise)

    def open(self, path: str) -> BinaryIO:
        return open(path, 'rb')

    def normalise_name(self, name: str) -> str:
        # Filesystems such as HFS+ return names in NFD form.
        return unicodedata.normalize('NFC', name)


class LocalTreeWalker:
    """
    Walks the source directory and turns files into LocalFile objects.

    Hidden directories are pruned, not just filtered, so large trees such as
    .git are never traversed.
    """

    def __init__(self, config: DeployConfig, local_store=None):
        self.config = config
        self.local = local_store or OSLocalStore()

    def walk(self, root: str) -> Iterator[FileEntry]:
        """
        Yield a FileEntry for every file under ``root`` that should be deployed.

        Raises:
            LocalFileError: If the source directory cannot be read
        """
        root = os.path.abspath(root)
        try:
            for dirpath, dirnames, filenames in self.local.walk(root):
                rel_dir = os.path.relpath(dirpath, root)
                rel_dir = '' if rel_dir == '.' else self.local.normalise_name(rel_dir.replace(os.sep, '/'))

                kept = []
                for name in sorted(dirnames):
                    rel = self._join(rel_dir, self.local.normalise_name(name))
                    if self.config.skip_local_dir(rel):
                        logger.debug(f"Skipping directory {rel}")
                        continue
                    kept.append(name)
                dirnames[:] = kept

                for name in sorted(filenames):
                    rel = self._join(rel_dir, self.local.normalise_name(name))
                    if self.config.skip_local_file(rel):
                        continue
                    if self.config.should_ignore_local(rel):
                        logger.debug(f"{rel} ignored")
                        continue
                    yield FileEntry(rel_path=rel, abs_path=os.path.join(dirpath, name))
        except OSError as e:
            raise LocalFileError(f"failed to walk {e.filename or root}: {e.strerror or e}") from e

    @staticmethod
    def _join(rel_dir: str, name: str) -> str:
        return f"{rel_dir}/{name}" if rel_dir else name

    def group(self, root: str) -> List[List[FileEntry]]:
        """Walk ``root`` and split the files into upload groups, in upload order."""
        file_config = self.config.file_config
        groups: List[List[FileEntry]] = [[] for _ in range(file_config.group_count)]
        for entry in self.walk(root):
            groups[file_config.group_index(entry.rel_path)].append(entry)
        return groups

    def open_local_file(self, entry: FileEntry) -> LocalFile:
        """
        Read a file and apply its route: gzip and headers.

        Raises:
            LocalFileError: If the file cannot be read
        """
        try:
            with self.local.open(entry.abs_path) as f:
                raw = f.read()
        except OSError as e:
            raise LocalFileError(f"Error opening file {entry.abs_path}: {e}") from e

        route = self.config.file_config.route_for(entry.rel_path)

        content = raw
        if route is not None and route.gzip:
            # A fixed mtime keeps the output, and so the ETag, stable between runs.
            content = gzip.compress(raw, mtime=0)

        content_type = ''
        if route is not None:
            content_type = route.headers.get('Content-Type', '')
        if not content_type:
            content_type = content_type_by_extension(entry.rel_path)
        if not content_type:
            # Have to look inside the file itself.
            content_type = detect_content_type(raw)

        return LocalFile(
            rel_path=entry.rel_path,
            abs_path=entry.abs_path,
            content=content,
            content_type=content_type,
            route=route,
            target_root=self.config.bucket_path
        )
