"""
fileforce/store/filestore.py

On-disk content-addressed store.

Layout (prefix_depth=1, prefix_width=2):

    <root>/.scratch/<tmp>          in-flight writes
    <root>/ab/cdef...              blob with blake3 hex "abcdef..."

Writes land in the scratch directory first, are hashed while being
written and only then renamed into their sharded location, so a reader
never observes a partial blob. Stored files are read-only (fmode).
"""

from __future__ import annotations

import logging
import pathlib
import re
import tempfile
from typing import AsyncIterator, Optional

import anyio
from blake3 import blake3

from fileforce.core.exceptions import ContentMismatch
from fileforce.store.base import CHUNK_SIZE, ByteSource, ContentStore, as_stream, unavailable

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[0-9a-f]{64}$")


def shard(checksum: str, prefix_depth: int, prefix_width: int) -> list:
    if len(checksum) <= prefix_depth * prefix_width:
        raise ValueError("checksum must be longer than prefix_depth * prefix_width")

    parts = [
        checksum[i * prefix_width : prefix_width * (i + 1)]
        for i in range(prefix_depth)
    ]
    parts.append(checksum[prefix_depth * prefix_width :])
    return [part for part in parts if part]


def is_identifier(value: str) -> bool:
    return isinstance(value, str) and bool(_IDENTIFIER.match(value))


def compute_identifier(data: bytes) -> str:
    """blake3 hex digest, the identifier FileStore assigns to data."""
    return blake3(data).hexdigest()


class FileStore(ContentStore):
    """
    Sharded blake3-addressed blob store rooted at a local directory.

    Parameters:
        root: directory used as the root of the store. Created if missing.
        prefix_depth: number of shard directories per blob
        prefix_width: characters of the checksum consumed per shard directory
        fmode: permissions set on stored blobs
        dmode: permissions set on created shard directories
    """

    def __init__(
        self,
        root,
        prefix_depth: int = 1,
        prefix_width: int = 2,
        fmode: int = 0o400,
        dmode: int = 0o700,
    ) -> None:
        self._root = pathlib.Path(root).expanduser().resolve()
        self.prefix_depth = prefix_depth
        self.prefix_width = prefix_width
        self.fmode = fmode
        self.dmode = dmode

        self._scratch_path.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> str:
        return str(self._root)

    @property
    def _scratch_path(self) -> pathlib.Path:
        return self._root / ".scratch"

    def path_for(self, identifier: str) -> pathlib.Path:
        """Sharded path of a blob. Raises ValueError for a malformed identifier."""
        if not is_identifier(identifier):
            raise ValueError(f"not a content identifier: {identifier!r}")
        return self._root.joinpath(*shard(identifier, self.prefix_depth, self.prefix_width))

    def exists(self, identifier: str) -> bool:
        if not is_identifier(identifier):
            return False
        return self.path_for(identifier).is_file()

    def __contains__(self, identifier: str) -> bool:
        return self.exists(identifier)

    async def has(self, identifier: str) -> bool:
        if not is_identifier(identifier):
            return False
        return await anyio.Path(self.path_for(identifier)).is_file()

    async def put(
        self,
        stream: ByteSource,
        expected_identifier: Optional[str] = None,
    ) -> str:
        hasher = blake3()
        size   = 0

        temp_file = tempfile.NamedTemporaryFile(dir=str(self._scratch_path), delete=False)
        temp_path = anyio.Path(temp_file.name)
        try:
            with temp_file:
                async_temp_file = anyio.wrap_file(temp_file)
                async for chunk in as_stream(stream):
                    hasher.update(chunk)
                    size += len(chunk)
                    await async_temp_file.write(chunk)

            identifier = hasher.hexdigest()

            if expected_identifier is not None and identifier != expected_identifier:
                raise ContentMismatch(
                    "stored bytes do not match the expected identifier",
                    {"identifier": expected_identifier, "actual": identifier},
                )

            blob_path = self.path_for(identifier)
            dest = anyio.Path(blob_path)
            if await dest.is_file():
                logger.debug("blob %s already stored", identifier)
                return identifier

            for parent in reversed(blob_path.relative_to(self._root).parents):
                directory = anyio.Path(self._root / parent)
                if not await directory.exists():
                    await directory.mkdir(mode=self.dmode, exist_ok=True)

            await temp_path.chmod(self.fmode)
            await temp_path.replace(dest)
            logger.debug("stored blob %s (%d bytes)", identifier, size)
            return identifier
        finally:
            with anyio.CancelScope(shield=True):
                await temp_path.unlink(missing_ok=True)

    async def read(self, identifier: str) -> AsyncIterator[bytes]:
        if not self.exists(identifier):
            raise unavailable(identifier, "content not in local store")

        async with await anyio.open_file(self.path_for(identifier), "rb") as file:
            while True:
                data = await file.read(CHUNK_SIZE)
                if not data:
                    break
                yield data

    async def delete(self, identifier: str) -> None:
        """Remove a blob. No error if it is absent."""
        if self.exists(identifier):
            path = anyio.Path(self.path_for(identifier))
            await path.chmod(0o600)
            await path.unlink(missing_ok=True)

    def __repr__(self) -> str:
        return f"FileStore(root={self.root!r})"
