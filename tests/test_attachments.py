import os
import sys
import base64
import httpx
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../backend")))
from models.schemas import Attachment, ImagePart, PartsContent, TextContent, TextPart
from services.attachments import AttachmentLoader


def _file(name, filetype, filepath=None):
    return Attachment(filename=name, filepath=filepath or f"/uploads/{name}", filetype=filetype, filesize=10)


@pytest.mark.asyncio
async def test_plain_text_without_files(tmp_path):
    content = await AttachmentLoader(data_dir=str(tmp_path)).build_content("Hello")
    assert content == TextContent(text="Hello")


@pytest.mark.asyncio
async def test_non_image_files_are_referenced_in_text(tmp_path):
    loader = AttachmentLoader(data_dir=str(tmp_path))
    files = [_file("report.pdf", "application/pdf"), _file("data.csv", "text/csv")]

    content = await loader.build_content("Summarise these", files)
    assert content == TextContent(text="Summarise these\n\nAttached files: [report.pdf], [data.csv]")

    only_files = await loader.build_content("", files)
    assert only_files == TextContent(text="Attached files: [report.pdf], [data.csv]")


@pytest.mark.asyncio
async def test_images_are_inlined_as_base64(tmp_path):
    raw = b"\x89PNG\r\n\x1a\nfake"
    (tmp_path / "cat.png").write_bytes(raw)
    loader = AttachmentLoader(data_dir=str(tmp_path))

    content = await loader.build_content("", [_file("cat.png", "image/png", "/data/cat.png")])
    assert isinstance(content, PartsContent)
    assert content.parts == [ImagePart(data=base64.b64encode(raw).decode(), mime_type="image/png")]


@pytest.mark.asyncio
async def test_remote_image_fetched_over_http(tmp_path):
    def handler(request):
        assert str(request.url) == "https://files.example.com/dog.jpg"
        return httpx.Response(200, content=b"jpegbytes")

    loader = AttachmentLoader(data_dir=str(tmp_path), transport=httpx.MockTransport(handler))
    content = await loader.build_content(
        "Look", [_file("dog.jpg", "image/jpeg", "https://files.example.com/dog.jpg")]
    )
    assert content.parts[0] == TextPart(value="Look")
    assert content.parts[1].data == base64.b64encode(b"jpegbytes").decode()


@pytest.mark.asyncio
async def test_unreadable_image_is_skipped(tmp_path):
    loader = AttachmentLoader(data_dir=str(tmp_path))
    content = await loader.build_content("Still here", [_file("gone.png", "image/png")])
    assert content == PartsContent(parts=[TextPart(value="Still here")])


@pytest.mark.asyncio
async def test_paths_outside_data_dir_are_refused(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (tmp_path / "secret.png").write_bytes(b"secret")
    loader = AttachmentLoader(data_dir=str(data_dir))

    content = await loader.build_content("x", [_file("secret.png", "image/png", "../secret.png")])
    assert content == PartsContent(parts=[TextPart(value="x")])
