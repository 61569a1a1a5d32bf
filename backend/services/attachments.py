import os
import base64
import asyncio
import logging
from typing import List, Optional, Sequence, Union

import httpx

from models.schemas import Attachment, ImagePart, PartsContent, TextContent, TextPart
from settings import settings

logger = logging.getLogger(__name__)


def file_references(files: Sequence[Attachment]) -> str:
    return "Attached files: " + ", ".join(f"[{f.filename}]" for f in files)


class AttachmentLoader:
    """Turns uploaded files into message content: images inline, everything else by name."""

    def __init__(self, data_dir: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.data_dir = data_dir or settings.get_data_dir()
        self._transport = transport

    def _local_path(self, filepath: str) -> str:
        # Upload paths look like "/uploads/abc.png" or "/data/abc.png" and are served from data_dir
        relative = filepath.lstrip("/")
        if relative.startswith("data/"):
            relative = relative[len("data/"):]
        path = os.path.abspath(os.path.join(self.data_dir, relative))
        if os.path.commonpath([path, os.path.abspath(self.data_dir)]) != os.path.abspath(self.data_dir):
            raise PermissionError(f"{filepath} is outside the data directory")
        return path

    async def read_bytes(self, attachment: Attachment) -> bytes:
        if attachment.filepath.startswith(("http://", "https://")):
            async with httpx.AsyncClient(transport=self._transport) as client:
                r = await client.get(attachment.filepath, timeout=30.0, follow_redirects=True)
                r.raise_for_status()
                return r.content

        # Absolute paths come straight from the UI's own temp uploads
        if os.path.isabs(attachment.filepath) and os.path.exists(attachment.filepath):
            path = attachment.filepath
        else:
            path = self._local_path(attachment.filepath)

        def _read():
            with open(path, "rb") as fh:
                return fh.read()

        return await asyncio.to_thread(_read)

    async def load_image(self, attachment: Attachment) -> ImagePart:
        raw = await self.read_bytes(attachment)
        return ImagePart(data=base64.b64encode(raw).decode(), mime_type=attachment.filetype)

    async def build_content(
        self, text: str, files: Sequence[Attachment] = ()
    ) -> Union[TextContent, PartsContent]:
        """
        Assemble user content. With at least one image the result is a parts list:
        text first, then each readable image, then a reference line for non-images.
        Otherwise the file names are appended to the text.
        """
        images = [f for f in files if f.is_image]
        others = [f for f in files if not f.is_image]

        if not images:
            if not files:
                return TextContent(text=text)
            refs = file_references(files)
            return TextContent(text=f"{text}\n\n{refs}" if text else refs)

        parts: List[Union[TextPart, ImagePart]] = []
        if text.strip():
            parts.append(TextPart(value=text))
        for image in images:
            try:
                parts.append(await self.load_image(image))
            except (OSError, httpx.HTTPError) as e:
                logger.warning("Skipping unreadable image %s: %s", image.filename, e)
        if others:
            parts.append(TextPart(value=file_references(others)))
        return PartsContent(parts=parts)
