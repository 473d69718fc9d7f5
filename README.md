# gorge

`gorge` is a library for serving your own Puppet modules the way the
Puppet Forge v3 API does. It keeps module release archives (`*.tar.gz`) in
a directory on disk, answers the module and release operations of the API
as plain Python calls, and offers WSGI middleware for request statistics,
User-Agent enforcement and falling back to an upstream forge.

## Installation

```
pip install .
```

The package depends on `werkzeug` and `packaging`.

## What is in the package

| Module | Contents |
| --- | --- |
| `gorge.slugs` | `check_module_slug`, `check_release_slug` |
| `gorge.metadata` | `ReleaseMetadata`, `ModuleDependency`, `SupportedOS` |
| `gorge.backend` | `Backend`, `FilesystemBackend`, the `Module` and `Release` records, `read_release_metadata`, `find_latest_version` |
| `gorge.api_modules` | `ModuleOperations`, `ApiResponse`, `error_body` |
| `gorge.api_releases` | `ReleaseOperations`, `full_release_plan` |
| `gorge.middleware` | `Statistics`, `StatisticsMiddleware`, `RequireUserAgent`, `ProxyFallback` |
| `gorge.logsetup` | `setup_logging` |

### Slugs

A module slug is `owner-name` or `owner/name`: the owner is alphanumeric,
the name starts with a lowercase letter and continues with lowercase
letters, digits and underscores. A release slug adds a separator and a
version `X.Y.Z`, optionally followed by a `-` or `+` suffix.

```python
from gorge.slugs import check_module_slug, check_release_slug

check_module_slug("acme-nginx")          # True
check_release_slug("acme-nginx-1.2.3")   # True
check_release_slug("acme-nginx")         # False
```

### The filesystem store

`FilesystemBackend(modules_dir)` keeps one subdirectory per module.
`add_release(data)` takes the bytes of a gzipped tar archive, reads its
`metadata.json` (whose `name` must be a valid module slug) and `README.md`,
records MD5 and SHA-256 sums, and writes the archive to
`<modules_dir>/<name>/<name>-<version>.tar.gz` unless it is already there.
Adding a release that is already known returns it unchanged. A module's
current release is the one with the highest version.

`load_modules()` reads every `.tar.gz` file below the modules directory; the
directory must exist. Other methods: `get_all_modules`, `get_module_by_slug`,
`get_all_releases`, `get_release_by_slug`, `delete_module_by_slug`,
`delete_release_by_slug` and `update_module`, which writes the module as
JSON to `<modules_dir>/<slug>.json`.

Lookups of unknown slugs raise `gorge.backend.ModuleNotFoundError` or
`gorge.backend.ReleaseNotFoundError`; unusable archives raise
`InvalidReleaseError`.

```python
from gorge.backend import FilesystemBackend

backend = FilesystemBackend("/srv/forge/modules")
backend.load_modules()
with open("acme-nginx-1.0.0.tar.gz", "rb") as handle:
    release = backend.add_release(handle.read())
print(release.slug, release.file_uri)
```

### API operations

`ModuleOperations(backend)` and `ReleaseOperations(backend, modules_dir,
fallback_proxy="")` return an `ApiResponse` with an HTTP status `code` and a
JSON-ready `body` (or `None`). Errors come back as bodies of the form
`{"message": ..., "errors": [...]}` rather than as exceptions.

```python
from gorge.api_modules import ModuleOperations
from gorge.api_releases import ReleaseOperations

modules = ModuleOperations(backend)
response = modules.get_modules(limit=10, owner="acme")
print(response.code, response.body["pagination"]["total"])

releases = ReleaseOperations(backend, "/srv/forge/modules")
response = releases.add_release(base64_text)   # 201 with uri, file_uri, slug
```

- `get_modules` clamps `limit` to 1–100 (default 20) and answers 404 when
  the offset is beyond the number of modules.
- `get_releases` filters by `module` and `owner`. When a fallback proxy is
  set, an empty result is answered with 404 so that a proxy can take over.
- `get_file(filename)` answers 200 with an open binary file as body.
- `deprecate_module`, `delete_module`, `delete_release`, `get_release`,
  `get_release_plan` and `get_release_plans` complete the set.

### Middleware

All middleware wraps any WSGI application.

- `StatisticsMiddleware(app, stats)` counts active and total connections and
  response times, overall and per path, in a `Statistics` object.
  `Statistics.record_cache` and `record_proxied` count cache hits and misses
  and proxied requests.
- `RequireUserAgent(app)` answers 400 with a JSON error when the request has
  no `User-Agent` header.
- `ProxyFallback(app, upstream, stats, should_proxy, on_response=None)` lets
  the application answer first; when `should_proxy(environ, status)` is
  true, it sends the same request to `upstream` and returns that answer,
  after calling `on_response` with an object whose `headers` and `body` may
  be changed. If the upstream cannot be reached, the local answer is kept.

```python
from gorge.middleware import ProxyFallback, RequireUserAgent, Statistics, StatisticsMiddleware

stats = Statistics()
app = StatisticsMiddleware(my_api_app, stats)
app = ProxyFallback(
    app,
    "https://forge.example.com",
    stats,
    lambda environ, status: status == 404 and environ["PATH_INFO"].startswith("/v3"),
)
app = RequireUserAgent(app)
```

### Logging

`setup_logging(dev)` configures the `gorge` logger: coloured console lines
from DEBUG in development mode, JSON lines from INFO otherwise.

## What the package does not do

The package has no command line and no ready-made server: it does not route
HTTP requests to the operations above, does not bind a port, serve TLS,
answer health checks or serve a web interface. It has no response cache, does
not read configuration files or environment variables, does not expand `~`
in paths and does not drop privileges. To put it on the network, wire the
operations into a WSGI application of your own and run it under any WSGI
server.