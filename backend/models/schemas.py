import re
import uuid
import datetime
from pydantic import BaseModel, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from models.errors import ValidationError


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# ---------------------------------------------------------------------------
# Message content: a tagged variant, either plain text or an ordered list of parts
# ---------------------------------------------------------------------------
class TextPart(BaseModel):
    kind: Literal["text"] = "text"
    value: str


class ImagePart(BaseModel):
    kind: Literal["image"] = "image"
    data: str  # base64 payload, relayed untouched
    mime_type: str

    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="kind")]


class TextContent(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class PartsContent(BaseModel):
    kind: Literal["parts"] = "parts"
    parts: List[ContentPart]


Content = Annotated[Union[TextContent, PartsContent], Field(discriminator="kind")]


def content_text(content: Union[TextContent, PartsContent]) -> str:
    """Readable text of a message; image parts contribute nothing."""
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, PartsContent):
        return "\n\n".join(p.value for p in content.parts if isinstance(p, TextPart))
    raise TypeError(f"Unknown content type: {type(content).__name__}")


def content_has_images(content: Union[TextContent, PartsContent]) -> bool:
    if isinstance(content, TextContent):
        return False
    if isinstance(content, PartsContent):
        return any(isinstance(p, ImagePart) for p in content.parts)
    raise TypeError(f"Unknown content type: {type(content).__name__}")


# ---------------------------------------------------------------------------
# Conversation state
# ---------------------------------------------------------------------------
class ChatTurn(BaseModel):
    """A role/content pair as sent to the completion endpoint."""
    role: Literal["system", "user", "assistant"]
    content: Content


class Message(ChatTurn):
    id: str = Field(default_factory=new_id)
    conversation_id: str
    role: Literal["user", "assistant"]
    created_at: datetime.datetime = Field(default_factory=utcnow)

    @property
    def text(self) -> str:
        return content_text(self.content)


class Conversation(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str = "guest"
    title: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)

    def preview(self) -> str:
        if not self.messages:
            return "No messages yet"
        return self.messages[-1].text[:50] + "..."

    def display_title(self) -> str:
        return self.title or "New Conversation"


class Attachment(BaseModel):
    """An uploaded file as handed over by the upload collaborator."""
    filename: str
    filepath: str
    filetype: str
    filesize: int = 0

    @property
    def is_image(self) -> bool:
        return self.filetype.startswith("image/")


# ---------------------------------------------------------------------------
# HTTP wire models
# ---------------------------------------------------------------------------
_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


def _parse_image_uri(uri: Any) -> ImagePart:
    match = _DATA_URI.match(uri) if isinstance(uri, str) else None
    if not match:
        raise ValidationError("Image parts must be base64 data URIs")
    return ImagePart(data=match.group("data"), mime_type=match.group("mime"))


def _parse_part(item: Dict[str, Any]) -> Union[TextPart, ImagePart]:
    kind = item.get("type")
    if kind == "text":
        return TextPart(value=str(item.get("text", "")))
    if kind == "image":
        return _parse_image_uri(item.get("image"))
    if kind == "image_url":
        image_url = item.get("image_url")
        if not isinstance(image_url, dict):
            raise ValidationError("image_url parts must be an object with a url")
        return _parse_image_uri(image_url.get("url"))
    raise ValidationError(f"Unsupported content part type: {kind!r}")


class WireMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: Union[str, List[Dict[str, Any]]]

    def to_turn(self) -> ChatTurn:
        if isinstance(self.content, str):
            return ChatTurn(role=self.role, content=TextContent(text=self.content))
        parts = [_parse_part(item) for item in self.content]
        return ChatTurn(role=self.role, content=PartsContent(parts=parts))


class ChatRequest(BaseModel):
    messages: List[WireMessage]
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


class ChatResponse(BaseModel):
    message: str


class UnlockRequest(BaseModel):
    password: str


class LlmEndpointUpdate(BaseModel):
    url: str
