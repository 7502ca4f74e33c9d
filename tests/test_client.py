import io
import json
from email import policy
from email.parser import BytesParser

import pytest
import requests
import responses

from gqlgateway.client import (
    ClientError,
    GraphQLClient,
    GraphqlErrors,
    Request,
    Upload,
    generate_user_agent,
    prepare_uploads_from_variables,
)

URL = "http://service.example.com/query"


@pytest.fixture
def mocked():
    with responses.RequestsMock() as rsps:
        yield rsps


def _parse_multipart(body, content_type):
    raw = b"Content-Type: " + content_type.encode() + b"\r\n\r\n" + body
    message = BytesParser(policy=policy.default).parsebytes(raw)
    return {
        part.get_param("name", header="content-disposition"): part
        for part in message.iter_parts()
    }


def test_basic_request(mocked):
    mocked.add(
        responses.POST,
        URL,
        body='{"data": {"root": {"test": "value"}}}',
    )
    result = GraphQLClient().request(URL, Request())
    assert result["root"]["test"] == "value"


def test_without_keep_alive(mocked):
    mocked.add(responses.POST, URL, body='{"data": {"root": {"test": "value"}}}')
    GraphQLClient(keep_alive=False).request(URL, Request())
    assert mocked.calls[0].request.headers["Connection"] == "close"


def test_with_session_cookies(mocked):
    mocked.add(responses.POST, URL, body='{"data": null}')
    session = requests.Session()
    session.cookies.set("session", "token")
    GraphQLClient(session=session).request(URL, Request())
    assert mocked.calls[0].request.headers["Cookie"] == "session=token"


def test_with_user_agent(mocked):
    mocked.add(responses.POST, URL, body='{"data": {}}')
    GraphQLClient(user_agent="My User Agent").request(URL, Request())
    assert mocked.calls[0].request.headers["User-Agent"] == "My User Agent"


def test_with_max_response_size(mocked):
    mocked.add(responses.POST, URL, body='{ "data": "long response" }')
    with pytest.raises(ClientError) as excinfo:
        GraphQLClient(max_response_size=1).request(URL, Request())
    assert str(excinfo.value) == "response exceeded maximum size of 1 bytes"


def test_empty_response_is_decoding_error(mocked):
    mocked.add(responses.POST, URL, body="")
    with pytest.raises(ClientError) as excinfo:
        GraphQLClient().request(URL, Request())
    assert str(excinfo.value).startswith("error decoding response")


def test_unexpected_status_code(mocked):
    mocked.add(responses.POST, URL, status=500, body="boom")
    with pytest.raises(ClientError) as excinfo:
        GraphQLClient().request(URL, Request())
    assert str(excinfo.value) == "unexpected response code: 500 Internal Server Error"


def test_graphql_errors_are_raised(mocked):
    mocked.add(
        responses.POST,
        URL,
        body=json.dumps(
            {
                "data": None,
                "errors": [
                    {"message": "first", "path": ["a", 0]},
                    {"message": "second", "extensions": {"code": "X"}},
                ],
            }
        ),
    )
    with pytest.raises(GraphqlErrors) as excinfo:
        GraphQLClient().request(URL, Request())
    assert str(excinfo.value) == "first,second"
    assert len(excinfo.value) == 2
    assert excinfo.value[0].path == ["a", 0]
    assert excinfo.value[1].extensions == {"code": "X"}


def test_request_headers_and_json_body(mocked):
    mocked.add(responses.POST, URL, body='{"data": {"ok": true}}')
    request = (
        Request(query="{ ok }")
        .with_headers({"X-Trace": ["a", "b"], "Content-Type": "text/plain"})
        .with_operation_name("Op")
        .with_operation_type("QUERY")
    )
    assert GraphQLClient().request(URL, request) == {"ok": True}
    sent = mocked.calls[0].request
    assert sent.headers["X-Trace"] == "a, b"
    assert sent.headers["Content-Type"] == "application/json; charset=utf-8"
    assert sent.headers["Accept"] == "application/json"
    assert json.loads(sent.body) == {
        "operationType": "query",
        "query": "{ ok }",
        "operationName": "Op",
    }


def test_body_omits_empty_members():
    body, content_type = Request(query="{ a }").body()
    assert content_type == "application/json; charset=utf-8"
    assert body == b'{"query": "{ a }"}\n'


@pytest.mark.parametrize(
    "operation, expected",
    [("Mutation", "mutation"), ("subscription", "subscription"), ("other", "query")],
)
def test_with_operation_type(operation, expected):
    assert Request().with_operation_type(operation).operation_type == expected


def test_generate_user_agent():
    assert generate_user_agent("query") == "gqlgateway/dev (query)"


def _nested_variables():
    return {
        "node1": {
            "node11": {
                "leaf111": Upload(),
                "leaf112": "someThing",
                "node113": {"leaf1131": Upload()},
            },
            "leaf12": 42,
            "leaf13": Upload(),
        },
        "node2": {
            "leaf21": False,
            "node21": {"leaf211": Upload()},
        },
        "node3": Upload(),
        "node4": [Upload(), Upload()],
        "node5": [Upload(), Upload()],
    }


def test_prepare_uploads_from_variables():
    variables = _nested_variables()
    files, file_map = prepare_uploads_from_variables(variables)
    assert sorted(file_map) == [f"file{i}" for i in range(9)]
    assert sorted(files) == sorted(file_map)
    paths = sorted(path for values in file_map.values() for path in values)
    assert paths == sorted(
        [
            "variables.node1.node11.node113.leaf1131",
            "variables.node1.node11.leaf111",
            "variables.node1.leaf13",
            "variables.node2.node21.leaf211",
            "variables.node3",
            "variables.node4.0",
            "variables.node4.1",
            "variables.node5.0",
            "variables.node5.1",
        ]
    )
    assert variables == {
        "node1": {
            "node11": {
                "leaf111": None,
                "leaf112": "someThing",
                "node113": {"leaf1131": None},
            },
            "leaf12": 42,
            "leaf13": None,
        },
        "node2": {"leaf21": False, "node21": {"leaf211": None}},
        "node3": None,
        "node4": [None, None],
        "node5": [None, None],
    }


def test_is_multipart():
    assert Request(variables=_nested_variables()).is_multipart() is True
    assert Request(variables={"a": {"b": 1}, "c": [1, 2]}).is_multipart() is False
    assert Request().is_multipart() is False


def test_multipart_header_without_uploads_sends_json(mocked):
    mocked.add(responses.POST, URL, body='{ "data": {"root": "multipart response"} }')
    request = Request(headers={"Content-Type": "multipart/form-data"})
    assert GraphQLClient().request(URL, request) == {"root": "multipart response"}
    assert mocked.calls[0].request.headers["Content-Type"] == "application/json; charset=utf-8"


def test_multipart_request_with_upload(mocked):
    mocked.add(responses.POST, URL, body='{"data": {"upload": "done"}}')
    upload = Upload(file=io.BytesIO(b"hello"), filename="a.txt", size=5, content_type="text/plain")
    request = Request(
        query="mutation($f: Upload!) { upload(f: $f) }",
        variables={"f": upload, "other": 1},
    )
    assert GraphQLClient().request(URL, request) == {"upload": "done"}

    sent = mocked.calls[0].request
    assert sent.headers["Content-Type"].startswith("multipart/form-data; boundary=")
    parts = _parse_multipart(sent.body, sent.headers["Content-Type"])
    assert set(parts) == {"operations", "map", "file0"}
    operations = json.loads(parts["operations"].get_content())
    assert operations["variables"] == {"f": None, "other": 1}
    assert json.loads(parts["map"].get_content()) == {"file0": ["variables.f"]}
    assert parts["file0"].get_filename() == "a.txt"
    assert parts["file0"].get_content_type() == "text/plain"
    assert parts["file0"].get_payload(decode=True) == b"hello"


def test_multipart_body_defaults_content_type():
    request = Request(variables={"files": [Upload(file=b"xyz", filename="b.bin")]})
    body, content_type = request.body()
    parts = _parse_multipart(body, content_type)
    assert parts["file0"].get_content_type() == "application/octet-stream"
    assert parts["file0"].get_payload(decode=True) == b"xyz"
    assert json.loads(parts["map"].get_content()) == {"file0": ["variables.files.0"]}