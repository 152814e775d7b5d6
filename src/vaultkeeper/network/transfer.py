"""
Chunked transfer of encrypted payloads over size-bounded messages.

Ingestion (client -> server, one item):
    {"file_name", "meta_data"}                  first message, no payload
    {"file_name"} + chunk bytes                 repeated, in order
    end of input                                buffer is the whole blob

Emission (server -> client, many items, newest first), per item:
    {"metadata": {total_items, current_item_index, is_first_item, is_last_item}}
    {"item_chunk": {item, chunk_index, total_chunks, is_first_chunk, is_last_chunk}} + chunk bytes

Chunk headers repeat the item header but never carry the payload.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .framing import Message
from ..core.exceptions import TransferError
from ..core.models import VaultRecord, record_from_header

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def split_chunks(blob: bytes, chunk_size: int = CHUNK_SIZE) -> List[bytes]:
    """Split blob into contiguous slices; an empty blob is one empty chunk."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not blob:
        return [b""]
    return [blob[i:i + chunk_size] for i in range(0, len(blob), chunk_size)]


def merge_chunks(chunks: Iterable[Optional[bytes]]) -> bytes:
    """Concatenate chunks in order; never-received slots count as empty."""
    return b"".join(chunk or b"" for chunk in chunks)


@dataclass
class StreamMetadata:
    total_items: int
    current_item_index: int
    is_first_item: bool
    is_last_item: bool

    def to_message(self) -> Message:
        return Message(body={"metadata": {
            "total_items": self.total_items,
            "current_item_index": self.current_item_index,
            "is_first_item": self.is_first_item,
            "is_last_item": self.is_last_item,
        }})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StreamMetadata":
        return cls(
            total_items=int(data.get("total_items", 0)),
            current_item_index=int(data.get("current_item_index", 0)),
            is_first_item=bool(data.get("is_first_item", False)),
            is_last_item=bool(data.get("is_last_item", False)),
        )


@dataclass
class TransferEnvelope:
    """One slice of one item's blob, with the item's header repeated."""

    item: VaultRecord
    chunk: bytes
    chunk_index: int
    total_chunks: int
    is_first_chunk: bool
    is_last_chunk: bool

    def to_message(self) -> Message:
        return Message(
            body={"item_chunk": {
                "item": self.item.to_header(),
                "chunk_index": self.chunk_index,
                "total_chunks": self.total_chunks,
                "is_first_chunk": self.is_first_chunk,
                "is_last_chunk": self.is_last_chunk,
            }},
            payload=self.chunk,
        )

    @classmethod
    def from_message(cls, data: Dict[str, Any], payload: bytes) -> "TransferEnvelope":
        return cls(
            item=record_from_header(data.get("item") or {}),
            chunk=payload,
            chunk_index=int(data.get("chunk_index", 0)),
            total_chunks=int(data.get("total_chunks", 0)),
            is_first_chunk=bool(data.get("is_first_chunk", False)),
            is_last_chunk=bool(data.get("is_last_chunk", False)),
        )


def iter_emission(
    records: Sequence[VaultRecord], chunk_size: int = CHUNK_SIZE
) -> Iterator[Union[StreamMetadata, TransferEnvelope]]:
    """Yield the emission sequence for records, in the order given."""
    total_items = len(records)
    for index, record in enumerate(records):
        yield StreamMetadata(
            total_items=total_items,
            current_item_index=index,
            is_first_item=index == 0,
            is_last_item=index == total_items - 1,
        )

        header_only = record_from_header(record.to_header())
        chunks = split_chunks(record.encrypted_data, chunk_size)
        for chunk_index, chunk in enumerate(chunks):
            yield TransferEnvelope(
                item=header_only,
                chunk=chunk,
                chunk_index=chunk_index,
                total_chunks=len(chunks),
                is_first_chunk=chunk_index == 0,
                is_last_chunk=chunk_index == len(chunks) - 1,
            )


def emit_records(stream, records: Sequence[VaultRecord], chunk_size: int = CHUNK_SIZE) -> int:
    """Send records over a server stream; returns the number of messages sent."""
    sent = 0
    for part in iter_emission(records, chunk_size):
        stream.context.check_deadline()
        stream.send(part.to_message())
        sent += 1
    logger.debug("emitted %d items in %d messages", len(records), sent)
    return sent


class StreamReassembler:
    """
    Rebuild items from an emission stream.

    An item is flushed either when its last chunk arrives while the latest
    metadata says it is the last item, or when the next item's metadata
    arrives while a partially or fully received item is open.
    """

    def __init__(self):
        self.items: List[VaultRecord] = []
        self._last_meta: Optional[StreamMetadata] = None
        self._current: Optional[VaultRecord] = None
        self._chunks: Optional[List[Optional[bytes]]] = None

    def feed(self, message: Message) -> None:
        body = message.body
        if "metadata" in body:
            self.on_metadata(StreamMetadata.from_dict(body["metadata"]))
        elif "item_chunk" in body:
            self.on_chunk(TransferEnvelope.from_message(body["item_chunk"], message.payload))
        else:
            raise TransferError("emission message has neither metadata nor item_chunk")

    def on_metadata(self, meta: StreamMetadata) -> None:
        if self._current is not None and self._chunks:
            self._flush()
        self._last_meta = meta

    def on_chunk(self, envelope: TransferEnvelope) -> None:
        if envelope.is_first_chunk:
            self._current = envelope.item
            self._chunks = [None] * envelope.total_chunks

        if self._chunks is not None and 0 <= envelope.chunk_index < len(self._chunks):
            self._chunks[envelope.chunk_index] = envelope.chunk

        if envelope.is_last_chunk and self._last_meta is not None and self._last_meta.is_last_item:
            self._flush()

    def _flush(self) -> None:
        if self._current is None:
            return
        self._current.encrypted_data = merge_chunks(self._chunks or [])
        self.items.append(self._current)
        self._current = None
        self._chunks = None


def receive_emission(stream) -> List[VaultRecord]:
    """Read an emission stream to its end and return the completed items.

    Any read error propagates and the partial list is discarded.
    """
    reassembler = StreamReassembler()
    while True:
        stream.context.check_deadline()
        message = stream.recv()
        if message is None:
            break
        reassembler.feed(message)
    return reassembler.items


def send_upload(stream, file_name: str, blob: bytes, meta_data: Optional[Dict[str, Any]] = None,
                chunk_size: int = CHUNK_SIZE) -> None:
    """Send the ingestion sequence for one file; the caller closes the stream."""
    stream.send(Message(body={"file_name": file_name, "meta_data": meta_data or {}}))
    for start in range(0, len(blob), chunk_size):
        stream.context.check_deadline()
        stream.send(Message(body={"file_name": file_name}, payload=blob[start:start + chunk_size]))


def receive_upload(stream) -> Tuple[str, Dict[str, Any], bytes]:
    """Read one ingestion sequence; returns (file_name, meta_data, blob).

    Read errors propagate before anything is returned, so a broken upload
    is never persisted.
    """
    first = stream.recv()
    if first is None:
        raise TransferError("upload stream closed before the file header")
    file_name = first.body.get("file_name")
    if not isinstance(file_name, str):
        raise TransferError("upload header has no file_name")
    meta_data = first.body.get("meta_data") or {}

    buf = bytearray()
    count = 0
    while True:
        stream.context.check_deadline()
        message = stream.recv()
        if message is None:
            break
        buf.extend(message.payload)
        count += 1

    logger.debug("received upload of %d bytes in %d chunks", len(buf), count)
    return file_name, meta_data, bytes(buf)
