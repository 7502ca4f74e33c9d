"""HTTP client for sending GraphQL requests to downstream services."""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass, field
from typing import IO, Any, Iterator, Mapping, Optional, Union

import requests
from requests.structures import CaseInsensitiveDict

VERSION = "dev"

DEFAULT_MAX_RESPONSE_SIZE = 1024 * 1024
DEFAULT_TIMEOUT = 5.0

_OPERATION_TYPES = ("query", "mutation", "subscription")
_CHUNK_SIZE = 64 * 1024


class ClientError(Exception):
    """A request could not be sent or its response could not be read."""


@dataclass
class Upload:
    """A file sent as part of a multipart GraphQL request."""

    file: Union[bytes, IO[bytes]] = b""
    filename: str = ""
    size: int = 0
    content_type: str = ""

    def read(self) -> bytes:
        """Return the whole content of the file."""
        if isinstance(self.file, (bytes, bytearray)):
            return bytes(self.file)
        return self.file.read()


@dataclass
class GraphqlError:
    """A single error as returned in a GraphQL response."""

    message: str
    path: Optional[list[Any]] = None
    extensions: Optional[dict[str, Any]] = None

    @classmethod
    def from_json(cls, data: Any) -> GraphqlError:
        """Build from a decoded JSON error object."""
        if not isinstance(data, dict):
            return cls(message=str(data))
        return cls(
            message=str(data.get("message", "")),
            path=data.get("path"),
            extensions=data.get("extensions"),
        )

    def to_json(self) -> dict[str, Any]:
        """Return a JSON-compatible mapping."""
        result: dict[str, Any] = {"message": self.message}
        if self.path:
            result["path"] = self.path
        result["extensions"] = self.extensions
        return result


class GraphqlErrors(Exception):
    """The list of errors returned in a GraphQL response."""

    def __init__(self, errors: list[GraphqlError]) -> None:
        self.errors = list(errors)
        super().__init__(",".join(error.message for error in self.errors))

    def __iter__(self) -> Iterator[GraphqlError]:
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)

    def __getitem__(self, index: int) -> GraphqlError:
        return self.errors[index]


def _is_upload_list(value: Any) -> bool:
    return isinstance(value, list) and bool(value) and all(isinstance(v, Upload) for v in value)


@dataclass
class Request:
    """A GraphQL request."""

    query: str = ""
    operation_type: str = ""
    operation_name: str = ""
    variables: Optional[dict[str, Any]] = None
    headers: Optional[Mapping[str, Any]] = None

    def with_headers(self, headers: Optional[Mapping[str, Any]]) -> Request:
        self.headers = headers
        return self

    def with_operation_type(self, operation: str) -> Request:
        """Set the operation type; anything unknown becomes "query"."""
        op = operation.lower()
        self.operation_type = op if op in _OPERATION_TYPES else "query"
        return self

    def with_operation_name(self, operation_name: str) -> Request:
        self.operation_name = operation_name
        return self

    def with_variables(self, variables: Optional[dict[str, Any]]) -> Request:
        self.variables = variables
        return self

    def is_multipart(self) -> bool:
        """Whether the variables hold an upload, so the body must be multipart."""
        stack = [self.variables or {}]
        while stack:
            for value in stack.pop().values():
                if isinstance(value, Upload) or _is_upload_list(value):
                    return True
                if isinstance(value, dict):
                    stack.append(value)
        return False

    def to_json(self) -> dict[str, Any]:
        """Return the JSON payload, leaving out empty optional members."""
        payload: dict[str, Any] = {}
        if self.operation_type:
            payload["operationType"] = self.operation_type
        payload["query"] = self.query
        if self.operation_name:
            payload["operationName"] = self.operation_name
        if self.variables:
            payload["variables"] = self.variables
        return payload

    def body(self) -> tuple[bytes, str]:
        """Return the encoded body and its content type."""
        if self.is_multipart():
            try:
                return _multipart_body(self)
            except (OSError, TypeError, ValueError) as exc:
                raise ClientError(f"unable to encode multipart request body: {exc}") from exc
        try:
            encoded = (json.dumps(self.to_json()) + "\n").encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise ClientError(f"unable to encode request body: {exc}") from exc
        return encoded, "application/json; charset=utf-8"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _multipart_body(request: Request) -> tuple[bytes, str]:
    files, file_map = prepare_uploads_from_variables(request.variables or {})
    boundary = secrets.token_hex(16)
    delimiter = f"--{boundary}\r\n".encode("ascii")
    parts: list[bytes] = []

    def add_part(headers: dict[str, str], content: bytes) -> None:
        head = "".join(f"{name}: {value}\r\n" for name, value in headers.items())
        parts.append(delimiter + head.encode("utf-8") + b"\r\n" + content + b"\r\n")

    add_part(
        {"Content-Disposition": 'form-data; name="operations"'},
        (json.dumps(request.to_json()) + "\n").encode("utf-8"),
    )
    add_part(
        {"Content-Disposition": 'form-data; name="map"'},
        (json.dumps(file_map) + "\n").encode("utf-8"),
    )
    for file_index in file_map:
        upload = files[file_index]
        add_part(
            {
                "Content-Disposition": (
                    f"form-data; name={_quote(file_index)}; filename={_quote(upload.filename)}"
                ),
                "Content-Type": upload.content_type or "application/octet-stream",
            },
            upload.read(),
        )
    body = b"".join(parts) + f"--{boundary}--\r\n".encode("ascii")
    return body, f"multipart/form-data; boundary={boundary}"


def prepare_uploads_from_variables(
    variables: dict[str, Any],
) -> tuple[dict[str, Upload], dict[str, list[str]]]:
    """Pull uploads out of the variables, replacing them with nulls.

    Returns the uploads by file index and the map from file index to the
    variable paths the uploads were taken from.
    """
    stack: list[tuple[str, dict[str, Any]]] = [("variables", variables)]
    files: dict[str, Upload] = {}
    file_map: dict[str, list[str]] = {}

    def register(path: str, upload: Upload) -> None:
        file_index = f"file{len(files)}"
        file_map[file_index] = [path]
        files[file_index] = upload

    while stack:
        path, data = stack.pop()
        for key, value in data.items():
            current_path = f"{path}.{key}"
            if isinstance(value, Upload):
                data[key] = None
                register(current_path, value)
            elif _is_upload_list(value):
                data[key] = [None] * len(value)
                for position, upload in enumerate(value):
                    register(f"{current_path}.{position}", upload)
            elif isinstance(value, dict):
                stack.append((current_path, value))
    return files, file_map


def generate_user_agent(operation: str) -> str:
    """Return the user agent sent for the given kind of operation."""
    return f"gqlgateway/{VERSION} ({operation})"


def _header_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


class GraphQLClient:
    """Sends GraphQL requests over HTTP."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        max_response_size: int = DEFAULT_MAX_RESPONSE_SIZE,
        user_agent: str = "",
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        keep_alive: bool = True,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.max_response_size = max_response_size
        self.user_agent = user_agent
        self.timeout = timeout
        self.keep_alive = keep_alive

    def request(self, url: str, request: Request) -> Any:
        """Send the request and return the response's data.

        Raises GraphqlErrors when the response holds errors and ClientError
        when the request fails or the response cannot be read.
        """
        body, content_type = request.body()

        headers: CaseInsensitiveDict = CaseInsensitiveDict()
        for name, value in (request.headers or {}).items():
            headers[name] = _header_value(value)
        headers["Content-Type"] = content_type
        headers["Accept"] = "application/json"
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        if not self.keep_alive:
            headers["Connection"] = "close"

        limit = self.max_response_size or None
        try:
            with self.session.post(
                url, data=body, headers=headers, timeout=self.timeout, stream=True
            ) as response:
                if response.status_code != 200:
                    raise ClientError(
                        f"unexpected response code: {response.status_code} {response.reason}"
                    )
                payload = self._read_limited(response, limit)
        except requests.RequestException as exc:
            raise ClientError(str(exc)) from exc

        document = self._decode(payload, limit)
        errors = document.get("errors") or []
        if errors:
            raise GraphqlErrors([GraphqlError.from_json(error) for error in errors])
        return document.get("data")

    @staticmethod
    def _read_limited(response: requests.Response, limit: Optional[int]) -> bytes:
        payload = bytearray()
        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
            if limit is not None:
                chunk = chunk[: limit - len(payload)]
            payload += chunk
            if limit is not None and len(payload) >= limit:
                break
        return bytes(payload)

    @staticmethod
    def _decode(payload: bytes, limit: Optional[int]) -> dict[str, Any]:
        try:
            text = payload.decode("utf-8").lstrip()
            document, _ = json.JSONDecoder().raw_decode(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            if limit is not None and len(payload) >= limit:
                raise ClientError(f"response exceeded maximum size of {limit} bytes") from exc
            raise ClientError(f"error decoding response: {exc}") from exc
        if not isinstance(document, dict):
            raise ClientError("error decoding response: response is not a JSON object")
        return document