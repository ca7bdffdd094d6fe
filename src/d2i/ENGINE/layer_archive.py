# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Deterministic layer tarballs.

Identical layer contents always produce byte-identical archives: entries are
sorted, ownership is normalized to root, and times come from the layer's
timestamp policy rather than the filesystem.
"""

import gzip
import hashlib
import io
import os
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import List

from ..errors import BuildEngineError
from ..BUILDERS.timestamps import DEFAULT_DIRECTORY_MODE, DEFAULT_MODIFICATION_TIME
from ..MODELS.container_spec import LayerDescriptor, LayerEntry

LAYER_MEDIA_TYPE = "application/vnd.docker.image.rootfs.diff.tar.gzip"
CHUNK_SIZE = 1024 * 1024


@dataclass
class LayerBlob:
    """A compressed layer written to disk."""

    name: str
    path: Path
    digest: str
    diff_id: str
    size: int
    media_type: str = LAYER_MEDIA_TYPE

    def descriptor(self) -> dict:
        return {"mediaType": self.media_type, "size": self.size, "digest": self.digest}


class _HashingWriter(io.RawIOBase):
    """Forwards writes to a file while hashing and counting them."""

    def __init__(self, target):
        self.target = target
        self.sha256 = hashlib.sha256()
        self.size = 0

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self.sha256.update(data)
        self.size += len(data)
        self.target.write(data)
        return len(data)


def _parent_directories(entries: List[LayerEntry]) -> List[str]:
    """Ancestors of every entry that are not entries themselves."""
    existing = {e.target for e in entries}
    parents = set()
    for entry in entries:
        parent = os.path.dirname(entry.target.rstrip("/"))
        while parent and parent != "/" and parent not in existing:
            parents.add(parent)
            parent = os.path.dirname(parent)
    return sorted(parents)


def _tar_info(name: str, mode: int, mtime: int, is_directory: bool, size: int = 0) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name.lstrip("/") + ("/" if is_directory else ""))
    info.type = tarfile.DIRTYPE if is_directory else tarfile.REGTYPE
    info.mode = mode
    info.mtime = mtime
    info.size = size
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def write_tar(layer: LayerDescriptor, fileobj) -> None:
    """
    Write the uncompressed tar stream of a layer.

    Args:
        layer: Layer to archive.
        fileobj: Binary file object receiving the tar stream.
    """
    entries = layer.entries()
    default_mtime = int(DEFAULT_MODIFICATION_TIME.timestamp())

    with tarfile.open(fileobj=fileobj, mode="w|", format=tarfile.PAX_FORMAT) as tar:
        items = [(p, None) for p in _parent_directories(entries)] + [(e.target, e) for e in entries]
        for target, entry in sorted(items, key=lambda item: item[0]):
            if entry is None:
                tar.addfile(_tar_info(target, DEFAULT_DIRECTORY_MODE, default_mtime, True))
                continue

            mtime = int(entry.modification_time.timestamp())
            if entry.is_directory:
                tar.addfile(_tar_info(target, entry.mode, mtime, True))
                continue

            size = os.path.getsize(entry.source)
            with open(entry.source, "rb") as f:
                tar.addfile(_tar_info(target, entry.mode, mtime, False, size), f)


def write_layer(layer: LayerDescriptor, dest_dir: Path) -> LayerBlob:
    """
    Write a layer as a gzip-compressed tarball.

    Args:
        layer: Layer to archive.
        dest_dir: Directory receiving the blob.

    Returns:
        The written blob with its digest and diff ID.
    """
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    tmp_path = dest_dir / f"{layer.name}.tar.gz.partial"

    try:
        with open(tmp_path, "wb") as raw:
            compressed = _HashingWriter(raw)
            with gzip.GzipFile(filename="", mode="wb", fileobj=compressed, mtime=0) as gz:
                uncompressed = _HashingWriter(gz)
                write_tar(layer, uncompressed)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise BuildEngineError(f"Cannot archive layer '{layer.name}': {e}") from e

    digest = f"sha256:{compressed.sha256.hexdigest()}"
    path = dest_dir / f"{digest.split(':', 1)[1]}.tar.gz"
    os.replace(tmp_path, path)

    return LayerBlob(
        name=layer.name,
        path=path,
        digest=digest,
        diff_id=f"sha256:{uncompressed.sha256.hexdigest()}",
        size=compressed.size,
    )
