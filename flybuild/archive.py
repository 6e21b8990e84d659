from __future__ import annotations

"""Streaming gzip'd tar archives of an input directory."""

import os
import tarfile
import threading
from typing import BinaryIO, Iterator

from .errors import ArchiveError

ROOT_ENTRY = "."


def _whole_second_mtime(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
    # Fractional mtimes would put a pax header ahead of every entry.
    tarinfo.mtime = int(tarinfo.mtime)
    return tarinfo


def write_archive(directory: str, sink: BinaryIO) -> None:
    """Write `directory` to `sink` as a non-seekable `w|gz` tar stream.

    The directory itself is the first entry (`./`); its contents follow in
    sorted order, recursively, each named relative to `./`.
    """
    if not os.path.isdir(directory):
        raise ArchiveError("not a directory: %s" % directory)

    with tarfile.open(fileobj=sink, mode="w|gz") as tar:
        # tarfile appends the trailing slash to directory names.
        tar.add(
            directory,
            arcname=ROOT_ENTRY,
            recursive=False,
            filter=_whole_second_mtime,
        )
        for name in sorted(os.listdir(directory)):
            tar.add(
                os.path.join(directory, name),
                arcname=os.path.join(ROOT_ENTRY, name),
                filter=_whole_second_mtime,
            )


def stream_archive(directory: str, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
    """Yield the compressed archive of `directory` chunk by chunk.

    A producer thread writes into an OS pipe, so only the pipe buffer and one
    chunk are held in memory. The stream is single-pass; call again to
    restart it.
    """
    read_fd, write_fd = os.pipe()
    failures: list[BaseException] = []

    def _produce() -> None:
        try:
            with os.fdopen(write_fd, "wb") as sink:
                write_archive(directory, sink)
        except BrokenPipeError:
            # Consumer stopped reading.
            pass
        except (OSError, tarfile.TarError, ArchiveError) as exc:
            failures.append(exc)

    producer = threading.Thread(target=_produce, name="archive-producer", daemon=True)
    producer.start()
    try:
        with os.fdopen(read_fd, "rb") as source:
            for chunk in iter(lambda: source.read(chunk_size), b""):
                yield chunk
    finally:
        producer.join()

    if failures:
        failure = failures[0]
        if isinstance(failure, ArchiveError):
            raise failure
        raise ArchiveError("failed to archive %s: %s" % (directory, failure)) from failure
