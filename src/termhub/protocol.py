"""JSON-lines message models exchanged with the UI host."""

from __future__ import annotations

import base64
import binascii
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from termhub.errors import ExitCode, TermHubError
from termhub.terminal.models import TerminalSession


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_bytes(text: str) -> bytes:
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise TermHubError(
            "Invalid base64 payload.",
            code=ExitCode.VALIDATION_ERROR,
            hint="Encode binary input as standard base64.",
        ) from exc


class _Message(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ErrorInfo(BaseModel):
    kind: str
    message: str
    hint: str = ""

    @classmethod
    def from_error(cls, error: TermHubError) -> ErrorInfo:
        return cls(kind=error.kind, message=error.message, hint=error.hint)


# Requests


class HelloRequest(_Message):
    type: Literal["hello"] = "hello"
    host_id: str = Field(min_length=1)


class CreateRequest(_Message):
    type: Literal["create"] = "create"
    request_id: str = ""
    profile: str | None = None
    theme: str | None = None
    cwd: str | None = None
    cols: int | None = None
    rows: int | None = None
    title: str | None = None


class WriteRequest(_Message):
    type: Literal["write"] = "write"
    session_id: str
    data: str
    encoding: Literal["utf-8", "base64"] = "utf-8"

    def payload(self) -> bytes:
        if self.encoding == "base64":
            return decode_bytes(self.data)
        return self.data.encode("utf-8")


class ResizeRequest(_Message):
    type: Literal["resize"] = "resize"
    session_id: str
    cols: int
    rows: int


class DisposeRequest(_Message):
    type: Literal["dispose"] = "dispose"
    request_id: str = ""
    session_id: str


class SplitRequest(_Message):
    type: Literal["split"] = "split"
    request_id: str = ""
    session_id: str
    direction: Literal["horizontal", "vertical"] = "vertical"


class ActivateRequest(_Message):
    type: Literal["activate"] = "activate"
    request_id: str = ""
    session_id: str


class ListRequest(_Message):
    type: Literal["list"] = "list"
    request_id: str = ""


Request = Annotated[
    Union[
        HelloRequest,
        CreateRequest,
        WriteRequest,
        ResizeRequest,
        DisposeRequest,
        SplitRequest,
        ActivateRequest,
        ListRequest,
    ],
    Field(discriminator="type"),
]

_REQUEST_ADAPTER: TypeAdapter[Request] = TypeAdapter(Request)


# Responses


class SessionInfo(BaseModel):
    id: str
    profile: str
    theme: str
    title: str
    cwd: str
    status: str
    active: bool
    pid: int | None = None
    host_id: str = ""

    @classmethod
    def from_session(cls, session: TerminalSession) -> SessionInfo:
        return cls(
            id=session.id,
            profile=session.profile_name,
            theme=session.theme_name,
            title=session.title,
            cwd=session.cwd,
            status=session.status.value,
            active=session.is_active,
            pid=session.pid,
            host_id=session.host_id,
        )


class CreatedResponse(_Message):
    type: Literal["created"] = "created"
    request_id: str = ""
    session_id: str | None = None
    error: ErrorInfo | None = None


class DisposedResponse(_Message):
    type: Literal["disposed"] = "disposed"
    request_id: str = ""
    ok: bool


class AckResponse(_Message):
    type: Literal["ack"] = "ack"
    request_id: str = ""
    session_id: str | None = None
    error: ErrorInfo | None = None


class SessionsResponse(_Message):
    type: Literal["sessions"] = "sessions"
    request_id: str = ""
    sessions: list[SessionInfo] = Field(default_factory=list)


# Push events


class DataEvent(_Message):
    type: Literal["data"] = "data"
    session_id: str
    data: str

    @classmethod
    def from_bytes(cls, session_id: str, chunk: bytes) -> DataEvent:
        return cls(session_id=session_id, data=encode_bytes(chunk))

    def payload(self) -> bytes:
        return decode_bytes(self.data)


class ExitEvent(_Message):
    type: Literal["exit"] = "exit"
    session_id: str
    code: int | None = None
    signal: int | None = None


class ErrorEvent(_Message):
    type: Literal["error"] = "error"
    session_id: str | None = None
    kind: str
    message: str

    @classmethod
    def from_error(cls, error: TermHubError, session_id: str | None = None) -> ErrorEvent:
        return cls(session_id=session_id, kind=error.kind, message=str(error))


Response = Union[CreatedResponse, DisposedResponse, AckResponse, SessionsResponse]
Event = Union[DataEvent, ExitEvent, ErrorEvent]


def parse_request(line: str | bytes) -> Request:
    try:
        return _REQUEST_ADAPTER.validate_json(line)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.error_count() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "message"
        raise TermHubError(
            f"Malformed request: {location}: {first.get('msg', 'invalid input')}",
            code=ExitCode.VALIDATION_ERROR,
            hint="Send one JSON object per line with a supported 'type'.",
        ) from exc


def encode_message(message: BaseModel) -> str:
    return message.model_dump_json()
