# gqlgateway

Building blocks for a gateway that federates several GraphQL services
behind one endpoint.

## What it provides

- **`gqlgateway.gqlast`** is a small GraphQL syntax tree model that the other
  modules work on. It has `Schema`, `Definition`, `FieldDefinition`, `Field`,
  `FragmentSpread`, `InlineFragment`, `OperationDefinition`, `Value`,
  `Directive` and `find_directive`.
- **`gqlgateway.permissions`** holds recursive field permissions.
  `AllowedFields` and `OperationPermissions` convert to and from a compact
  JSON form, with `to_json` / `from_json`. That form is `"*"`, a list of
  field names, or a nested object. You can also:
  - remove unauthorized fields from an operation with
    `OperationPermissions.filter_authorized_fields`, which returns one
    `FieldAccessError` per removed field;
  - get a copy of a schema stripped down to what a role may see with
    `OperationPermissions.filter_schema`;
  - combine roles with `merge_permissions` and `merge_allowed_fields`.
- **`gqlgateway.request_context`** has an immutable `Context`. It carries
  per-request permissions (`add_permissions_to_context`,
  `get_permissions_from_context`). It also carries extra headers for outgoing
  requests (`add_outgoing_requests_header_to_context`,
  `get_outgoing_request_headers_from_context`).
- **`gqlgateway.client`**: `GraphQLClient.request` posts a `Request` to a
  downstream service and returns the response's `data`. It enforces a
  maximum response size, which is 1 MiB by default and unlimited when set to
  0. It raises `GraphqlErrors` when the service reports errors, and
  `ClientError` when the request fails or the response cannot be decoded.
  When the variables hold `Upload` objects, the request is sent as
  `multipart/form-data` with `operations` and `map` parts.
  `prepare_uploads_from_variables` pulls those uploads out of the variables.
- **`gqlgateway.config`** has `Config` and `load_config`. They read one or
  more JSON configuration files over a set of defaults. `parse_duration`
  parses durations such as `"300ms"`, `"5s"` or `"1m30s"`. Timeouts that are
  not set fall back to the default timeouts.
- **`gqlgateway.introspection`** answers `__schema` and `__type` selections
  from a schema (`resolve_introspection_fields`). It applies and removes
  `@skip` / `@include` directives (`evaluate_skip_and_include`). It also
  merges nested result maps (`merge_maps`).

## Example

```python
from gqlgateway.permissions import OperationPermissions, merge_permissions

reader = OperationPermissions.from_json({"query": {"movie": ["title"]}})
editor = OperationPermissions.from_json({"mutation": {"movie": ["updateTitle"]}})

role = merge_permissions(reader, editor)
print(role.to_json())
```

Sending a request to a downstream service:

```python
from gqlgateway.client import GraphQLClient, Request, generate_user_agent

client = GraphQLClient(user_agent=generate_user_agent("query"))
data = client.request(
    "http://localhost:8080/query",
    Request("{ service { name } }").with_operation_type("query"),
)
```

## Configuration

```python
from gqlgateway.config import load_config

config = load_config(["config.json"])
print(config.gateway_address(), config.services)
```

The defaults are:

| Setting | Default |
| --- | --- |
| gateway port | 8082 |
| private port | 8083 |
| metrics port | 9009 |
| poll interval | `10s` |
| HTTP client timeout | `5s` |
| read timeout | `5s` |
| write timeout | `10s` |
| idle timeout | `120s` |
| maximum requests per query | 50 |
| maximum service response size | 1 MiB |

Two environment variables change the configuration:

- `GQLGATEWAY_SERVICE_LIST` adds services. Separate them with whitespace.
  Loading raises `ConfigError` when no service is configured at all.
- `GQLGATEWAY_LOG_LEVEL` overrides the log level.

## What it does not do

This package has the parts a gateway is built from, not a gateway. It does
not include any of the following:

- an HTTP server or a command to start one;
- fetching or merging of the schemas of downstream services;
- query planning or execution across services;
- plugins;
- watching configuration files for changes.

## Running the tests

Install the package with its `test` extra, then run pytest from the project
directory.