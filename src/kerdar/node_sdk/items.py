"""
Node Items - Data structures flowing through workflows.

An execution item is a plain JSON-compatible dict:

    {"json": {...}, "binary": {...}, "pairedItem": {"item": 0, "input": 0}}

A node's output is a list of output channels, each a list of items.
Binary attachments are described by BinaryData and stored base64-encoded.
"""

from __future__ import annotations

import base64
import mimetypes
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypedDict, Union

from pydantic import BaseModel, ConfigDict, Field


class PairedItem(TypedDict, total=False):
    """Reference to the source item that produced an item."""
    item: int
    input: int


class ExecutionItem(TypedDict, total=False):
    """
    Single item of execution data.

    Format: {"json": {...}, "binary": {...}, "pairedItem": {"item": 0}}
    """
    json: Dict[str, Any]
    binary: Dict[str, Any]
    pairedItem: PairedItem


# Outer list = output channels, inner list = items in that channel
OutputChannels = List[List[ExecutionItem]]


class BinaryData(BaseModel):
    """
    Binary attachment for an execution item.

    Data is kept base64-encoded so items stay JSON-serializable.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    data: str = Field(..., description="Base64 encoded content")
    mime_type: str = Field(
        "application/octet-stream", alias="mimeType", description="MIME type"
    )
    file_name: Optional[str] = Field(None, alias="fileName", description="Original filename")
    file_extension: Optional[str] = Field(None, alias="fileExtension")
    file_size: Optional[int] = Field(None, alias="fileSize", description="Size in bytes")

    @classmethod
    def from_bytes(
        cls,
        content: Union[bytes, bytearray, str],
        file_name: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> "BinaryData":
        """Build from raw bytes (or an already base64-encoded string)."""
        if isinstance(content, str):
            encoded = content
            size = len(base64.b64decode(content))
        else:
            encoded = base64.b64encode(bytes(content)).decode("ascii")
            size = len(content)

        if mime_type is None and file_name:
            mime_type = mimetypes.guess_type(file_name)[0]

        extension = None
        if file_name and "." in file_name:
            extension = file_name.rsplit(".", 1)[1]

        return cls(
            data=encoded,
            mime_type=mime_type or "application/octet-stream",
            file_name=file_name,
            file_extension=extension,
            file_size=size,
        )

    def to_bytes(self) -> bytes:
        """Decode the payload."""
        return base64.b64decode(self.data)

    def to_item_dict(self) -> Dict[str, Any]:
        """camelCase dict as stored under an item's "binary" key."""
        return self.model_dump(by_alias=True, exclude_none=True)


def make_item(
    json_data: Optional[Dict[str, Any]] = None,
    paired_item: Optional[int] = None,
    binary: Optional[Dict[str, Any]] = None,
) -> ExecutionItem:
    """Create an item, optionally linked to a source item index."""
    item: ExecutionItem = {"json": dict(json_data or {})}
    if binary:
        item["binary"] = binary
    if paired_item is not None:
        item["pairedItem"] = {"item": paired_item}
    return item


def return_json_array(data: Union[Sequence[Any], Dict[str, Any]]) -> List[ExecutionItem]:
    """Wrap raw values as execution items. Non-dict values land under "data"."""
    if isinstance(data, dict):
        data = [data]

    items: List[ExecutionItem] = []
    for index, value in enumerate(data):
        json_data = value if isinstance(value, dict) else {"data": value}
        items.append({"json": json_data, "pairedItem": {"item": index}})
    return items


def copy_input_items(items: Iterable[ExecutionItem], properties: Sequence[str]) -> List[ExecutionItem]:
    """Copy only the named json properties of each item."""
    copied: List[ExecutionItem] = []
    for item in items:
        source = item.get("json", {})
        copied.append({"json": {key: source[key] for key in properties if key in source}})
    return copied


def normalize_items(value: Any) -> List[ExecutionItem]:
    """Coerce loose node output (dicts without "json", scalars) into items."""
    if value is None:
        return []
    if isinstance(value, dict):
        value = [value]

    items: List[ExecutionItem] = []
    for index, entry in enumerate(value):
        if isinstance(entry, dict) and isinstance(entry.get("json"), dict):
            items.append(entry)  # type: ignore[arg-type]
        elif isinstance(entry, dict):
            items.append({"json": entry, "pairedItem": {"item": index}})
        else:
            items.append({"json": {"data": entry}, "pairedItem": {"item": index}})
    return items


def has_items(output: Optional[OutputChannels]) -> bool:
    """True if any output channel carries at least one item."""
    return bool(output) and any(channel for channel in output)


__all__ = [
    "BinaryData",
    "ExecutionItem",
    "OutputChannels",
    "PairedItem",
    "copy_input_items",
    "has_items",
    "make_item",
    "normalize_items",
    "return_json_array",
]
