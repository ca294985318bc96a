# pymailflow/mail/attachments.py
"""
Attachment resolution.

A job payload only carries attachment *specs*, small dicts that survive JSON:
``{"path": ...}`` for a local file, ``{"url": ...}`` for an HTTP(S) resource
or ``{"content": <base64>}`` for inline bytes. ``name`` and ``mime_type`` are
optional and guessed when missing.
"""
import base64
import binascii
import logging
import mimetypes
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from urllib.parse import urlparse

import httpx

from pymailflow.common.exceptions import AttachmentError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime(filename: str) -> str:
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or DEFAULT_MIME_TYPE


@dataclass(frozen=True)
class Attachment:
    content: bytes
    filename: str
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def maintype(self) -> str:
        return self.mime_type.split("/", 1)[0]

    @property
    def subtype(self) -> str:
        parts = self.mime_type.split("/", 1)
        return parts[1] if len(parts) == 2 else "octet-stream"


class AttachmentResolver:
    def __init__(self, http_client: Optional[httpx.Client] = None, timeout: float = 30, max_size: Optional[int] = None):
        self._http_client = http_client
        self.timeout = timeout
        self.max_size = max_size

    def resolve(self, spec: Union[Attachment, str, Mapping[str, Any]]) -> Attachment:
        if isinstance(spec, Attachment):
            return spec
        if isinstance(spec, str):
            spec = {"path": spec}

        name = spec.get("name") or spec.get("filename")
        mime_type = spec.get("mime_type")
        if spec.get("content") is not None:
            content = self._decode_inline(spec["content"])
            name = name or "attachment"
        elif spec.get("url"):
            content = self._fetch_url(spec["url"])
            name = name or os.path.basename(urlparse(spec["url"]).path) or "attachment"
        elif spec.get("path"):
            content = self._read_file(spec["path"])
            name = name or os.path.basename(spec["path"])
        else:
            raise AttachmentError(f"Attachment needs one of path, url or content: {dict(spec)!r}")

        if self.max_size is not None and len(content) > self.max_size:
            raise AttachmentError(f"Attachment {name} is {len(content)} bytes, limit is {self.max_size}")
        return Attachment(content=content, filename=name, mime_type=mime_type or guess_mime(name))

    def resolve_all(self, specs: Iterable[Any]) -> List[Attachment]:
        return [self.resolve(spec) for spec in specs]

    @staticmethod
    def _decode_inline(data: str) -> bytes:
        content = data.strip()
        # Tolerate missing padding.
        if len(content) % 4:
            content += "=" * (4 - len(content) % 4)
        try:
            return base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AttachmentError(f"Invalid base64 attachment content: {e}") from e

    @staticmethod
    def _read_file(path: str) -> bytes:
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except OSError as e:
            raise AttachmentError(f"Cannot read attachment {path}: {e}") from e

    def _fetch_url(self, url: str) -> bytes:
        if urlparse(url).scheme not in ("http", "https"):
            raise AttachmentError(f"Unsupported attachment URL scheme: {url}")
        client = self._http_client or httpx.Client(timeout=self.timeout, follow_redirects=True)
        try:
            response = client.get(url)
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            raise AttachmentError(f"Cannot fetch attachment {url}: {e}") from e
        finally:
            if client is not self._http_client:
                client.close()


def attachment_spec(path: Optional[str] = None, url: Optional[str] = None, content: Optional[bytes] = None,
                    name: Optional[str] = None, mime_type: Optional[str] = None) -> Dict[str, Any]:
    """Builds a JSON-safe spec for a payload's ``attachments`` list."""
    spec: Dict[str, Any] = {}
    if path is not None:
        spec["path"] = path
    if url is not None:
        spec["url"] = url
    if content is not None:
        spec["content"] = base64.b64encode(content).decode("ascii")
    if name:
        spec["name"] = name
    if mime_type:
        spec["mime_type"] = mime_type
    return spec
