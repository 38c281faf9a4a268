"""Memory-bounded file reading.

Small files are read in one call; anything above ``STREAMING_THRESHOLD`` is
streamed in chunks with a memory check after every chunk. A read that
crosses the ceiling raises and returns no content at all.
"""

import codecs
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .errors import FileReadError, InitialMemoryTooHighError, MemoryLimitExceededError
from .file_walker import build_file_record
from .memory import MemorySampler, check_memory_limit, get_memory_usage
from .models import FileRecord, MemoryInfo

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
STREAM_CHUNK_SIZE = 64 * 1024
BULK_CHUNK_SIZE = 1 * MIB
DEFAULT_MAX_MEMORY = 100 * MIB
BULK_MAX_MEMORY = 50 * MIB
STREAMING_THRESHOLD = 10 * MIB

ChunkCallback = Callable[[str | bytes, int], None]
ProgressCallback = Callable[[int, int], None]


@dataclass
class ProcessingOptions:
    """Read options. ``None`` fields fall back to the calling function's default.

    ``encoding=None`` reads raw bytes.
    """

    chunk_size: Optional[int] = None
    max_memory_usage: Optional[int] = None
    encoding: Optional[str] = "utf-8"
    on_chunk: Optional[ChunkCallback] = None
    on_progress: Optional[ProgressCallback] = None


@dataclass
class ContentUnit:
    """A file's content plus read telemetry. Consumed once by the parser."""

    record: FileRecord
    content: str | bytes
    processing_time: float
    memory_usage: MemoryInfo
    chunks: int = 1

    @property
    def text(self) -> str:
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8", errors="replace")
        return self.content


def _as_record(source: FileRecord | str | Path) -> FileRecord:
    if isinstance(source, FileRecord):
        return source
    path = Path(source)
    try:
        return build_file_record(path, path.name, path.stat())
    except OSError as e:
        raise FileReadError(f"Failed to read file {path}: {e}", str(path)) from e


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def read_file_with_memory_monitoring(
    source: FileRecord | str | Path,
    options: ProcessingOptions | None = None,
    sampler: MemorySampler = get_memory_usage,
) -> ContentUnit:
    """Read a file without exceeding a memory ceiling.

    Args:
        source: FileRecord (or path) to read.
        options: Read options; the ceiling defaults to 100MiB.
        sampler: Memory sampler, replaceable in tests.

    Returns:
        ContentUnit with the decoded text (or bytes when ``encoding`` is None).

    Raises:
        InitialMemoryTooHighError: Memory already above the ceiling before reading.
        MemoryLimitExceededError: Ceiling crossed while streaming a large file.
        FileReadError: The file could not be opened or read.
    """
    options = options or ProcessingOptions()
    record = _as_record(source)
    max_memory = options.max_memory_usage or DEFAULT_MAX_MEMORY

    initial = sampler()
    if initial.used > max_memory:
        raise InitialMemoryTooHighError(initial.used, max_memory, record.path)

    if record.size > STREAMING_THRESHOLD:
        return stream_file_content(record, options, sampler=sampler)

    start = time.perf_counter()
    try:
        if options.encoding is None:
            with open(record.path, "rb") as f:
                content: str | bytes = f.read()
        else:
            with open(record.path, "r", encoding=options.encoding, errors="replace", newline="") as f:
                content = f.read()
    except (OSError, LookupError) as e:
        raise FileReadError(f"Failed to read file {record.path}: {e}", record.path) from e

    return ContentUnit(
        record=record,
        content=content,
        processing_time=_elapsed_ms(start),
        memory_usage=check_memory_limit(sampler(), max_memory),
        chunks=1,
    )


def _iter_chunks(record: FileRecord, chunk_size: int):
    try:
        with open(record.path, "rb") as f:
            while chunk := f.read(chunk_size):
                yield chunk
    except OSError as e:
        raise FileReadError(f"Failed to stream file {record.path}: {e}", record.path) from e


def stream_file_content(
    source: FileRecord | str | Path,
    options: ProcessingOptions | None = None,
    sampler: MemorySampler = get_memory_usage,
) -> ContentUnit:
    """Read a file in chunks, checking the memory ceiling after every chunk.

    Text is decoded incrementally so multi-byte characters split across
    chunk boundaries survive.
    """
    options = options or ProcessingOptions()
    record = _as_record(source)
    chunk_size = options.chunk_size or STREAM_CHUNK_SIZE
    max_memory = options.max_memory_usage or DEFAULT_MAX_MEMORY
    decoder = None
    if options.encoding is not None:
        try:
            decoder = codecs.getincrementaldecoder(options.encoding)(errors="replace")
        except LookupError as e:
            raise FileReadError(f"Failed to stream file {record.path}: {e}", record.path) from e

    start = time.perf_counter()
    parts: list[str | bytes] = []
    processed = 0
    chunk_count = 0

    for raw in _iter_chunks(record, chunk_size):
        memory = check_memory_limit(sampler(), max_memory)
        if memory.is_over_limit:
            parts.clear()
            logger.warning(f"Memory limit exceeded while streaming {record.relative_path}")
            raise MemoryLimitExceededError(memory.used, max_memory, record.path)

        chunk: str | bytes = decoder.decode(raw) if decoder else raw
        parts.append(chunk)
        chunk_count += 1
        processed += len(raw)

        if options.on_chunk:
            options.on_chunk(chunk, processed - len(raw))
        if options.on_progress:
            options.on_progress(processed, record.size)

    if decoder is not None:
        parts.append(decoder.decode(b"", final=True))
        content: str | bytes = "".join(str(p) for p in parts)
    else:
        content = b"".join(bytes(p) for p in parts)

    return ContentUnit(
        record=record,
        content=content,
        processing_time=_elapsed_ms(start),
        memory_usage=check_memory_limit(sampler(), max_memory),
        chunks=chunk_count,
    )


def process_large_file(
    source: FileRecord | str | Path,
    processor: Callable[[str | bytes, int], None],
    options: ProcessingOptions | None = None,
    sampler: MemorySampler = get_memory_usage,
) -> ContentUnit:
    """Feed a file to ``processor`` chunk by chunk without keeping its content.

    Defaults to 1MiB chunks under a 50MiB ceiling. The returned unit's
    content is a summary string (text mode) or empty bytes (binary mode).
    """
    options = options or ProcessingOptions()
    record = _as_record(source)
    chunk_size = options.chunk_size or BULK_CHUNK_SIZE
    max_memory = options.max_memory_usage or BULK_MAX_MEMORY
    decoder = None
    if options.encoding is not None:
        decoder = codecs.getincrementaldecoder(options.encoding)(errors="replace")

    start = time.perf_counter()
    offset = 0
    chunk_count = 0

    for raw in _iter_chunks(record, chunk_size):
        memory = check_memory_limit(sampler(), max_memory)
        if memory.is_over_limit:
            raise MemoryLimitExceededError(memory.used, max_memory, record.path)

        processor(decoder.decode(raw) if decoder else raw, offset)
        chunk_count += 1
        offset += len(raw)
        if options.on_progress:
            options.on_progress(offset, record.size)

    return ContentUnit(
        record=record,
        content=f"Processed {chunk_count} chunks" if decoder else b"",
        processing_time=_elapsed_ms(start),
        memory_usage=check_memory_limit(sampler(), max_memory),
        chunks=chunk_count,
    )
