import base64
import io
import json
import tarfile
from urllib.parse import parse_qs, urlsplit

import pytest

from gorge.api_releases import ReleaseOperations, full_release_plan
from gorge.backend import FilesystemBackend, ReleasePlan


def make_archive(name, version, author="acme", readme="# readme"):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        files = {
            f"{name}-{version}/metadata.json": json.dumps(
                {"name": name, "version": version, "author": author, "dependencies": []}
            ).encode(),
            f"{name}-{version}/README.md": readme.encode(),
        }
        for path, content in files.items():
            info = tarfile.TarInfo(path)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


@pytest.fixture
def backend(tmp_path):
    return FilesystemBackend(str(tmp_path))


@pytest.fixture
def ops(backend, tmp_path):
    return ReleaseOperations(backend, str(tmp_path), "")


def query_of(url):
    return parse_qs(urlsplit(url).query)


def test_full_release_plan_paths():
    plan = full_release_plan(ReleasePlan(uri="/p", name="acme::deploy", private=True))
    assert plan["filename"] == "plans/deploy.pp"
    assert plan["plan_metadata"]["file"] == plan["filename"]
    assert plan["plan_metadata"]["private"] is True
    nested = full_release_plan(ReleasePlan(name="acme::app::deploy"))
    assert nested["filename"] == "plans/app/deploy.pp"


def test_add_release_round_trip(ops, backend):
    data = make_archive("acme-ntp", "1.0.0")
    resp = ops.add_release(base64.b64encode(data).decode())
    assert resp.code == 201
    assert resp.body["slug"] == "acme-ntp-1.0.0"
    assert resp.body["file_uri"] == "/v3/files/acme-ntp-1.0.0.tar.gz"
    assert backend.get_release_by_slug("acme-ntp-1.0.0").file_size == len(data)


def test_add_release_empty(ops):
    resp = ops.add_release("")
    assert resp.code == 400
    assert resp.body["message"] == "No file data provided"


def test_add_release_bad_base64(ops):
    resp = ops.add_release("!!not base64!!")
    assert resp.code == 400
    assert resp.body["message"] == "Invalid base64 encoded data"


def test_add_release_not_an_archive(ops):
    resp = ops.add_release(base64.b64encode(b"plain bytes").decode())
    assert resp.code == 400
    assert resp.body["message"] == "Failed to add release"


def test_delete_release(ops, backend):
    backend.add_release(make_archive("acme-ntp", "1.0.0"))
    assert ops.delete_release("bad slug").code == 400
    assert ops.delete_release("acme-ntp-1.0.0").code == 204
    assert ops.get_release("acme-ntp-1.0.0").code == 404


@pytest.mark.parametrize(
    "filename, message",
    [
        ("", "No filename provided"),
        ("../acme-ntp-1.0.0.tar.gz", "Invalid filename"),
        ("a/b.tar.gz", "Invalid filename"),
        ("nonsense.tar.gz", "Invalid release slug format"),
    ],
)
def test_get_file_rejects(ops, filename, message):
    resp = ops.get_file(filename)
    assert resp.code == 400
    assert resp.body["message"] == message


def test_get_file(ops, backend):
    data = make_archive("acme-ntp", "1.0.0")
    backend.add_release(data)
    resp = ops.get_file("acme-ntp-1.0.0.tar.gz")
    assert resp.code == 200
    with resp.body as handle:
        assert handle.read() == data
    missing = ops.get_file("acme-ntp-2.0.0.tar.gz")
    assert missing.code == 404
    assert missing.body["message"] == "File not found"


def test_get_release(ops, backend):
    backend.add_release(make_archive("acme-ntp", "1.0.0", readme="hello"))
    resp = ops.get_release("acme-ntp-1.0.0")
    assert resp.code == 200
    assert resp.body["version"] == "1.0.0"
    assert resp.body["readme"] == "hello"
    missing = ops.get_release("acme-ntp-9.9.9")
    assert missing.code == 404
    assert missing.body["errors"] == ["release not found"]


def test_release_plans(ops, backend):
    backend.add_release(make_archive("acme-ntp", "1.0.0"))
    release = backend.get_release_by_slug("acme-ntp-1.0.0")
    release.plans.append(ReleasePlan(uri="/plan", name="ntp::deploy"))
    one = ops.get_release_plan("acme-ntp-1.0.0", "ntp::deploy")
    assert one.code == 200
    assert one.body == full_release_plan(release.plans[0])
    assert ops.get_release_plan("acme-ntp-1.0.0", "ntp::other").code == 404
    assert ops.get_release_plan("acme-ntp-5.0.0", "ntp::deploy").code == 404
    many = ops.get_release_plans("acme-ntp-1.0.0")
    assert many.code == 200
    assert len(many.body["results"]) == 1


def test_get_releases_pagination(ops, backend):
    for version in ("1.0.0", "1.1.0", "1.2.0"):
        backend.add_release(make_archive("acme-ntp", version))
    page = ops.get_releases(limit=2, offset=0)
    assert page.code == 200
    assert len(page.body["results"]) == 2
    assert page.body["pagination"]["total"] == 3
    assert page.body["pagination"]["previous"] is None
    assert query_of(page.body["pagination"]["next"])["offset"] == ["2"]

    last = ops.get_releases(limit=2, offset=2)
    assert len(last.body["results"]) == 1
    assert last.body["pagination"]["next"] is None
    assert query_of(last.body["pagination"]["previous"])["offset"] == ["0"]
    assert query_of(last.body["pagination"]["first"])["offset"] == ["0"]


def test_get_releases_filters(ops, backend):
    backend.add_release(make_archive("acme-ntp", "1.0.0", author="acme"))
    backend.add_release(make_archive("other-web", "1.0.0", author="other"))
    by_module = ops.get_releases(module="other-web")
    assert [r["slug"] for r in by_module.body["results"]] == ["other-web-1.0.0"]
    assert query_of(by_module.body["pagination"]["current"])["module"] == ["other-web"]
    by_owner = ops.get_releases(owner="acme")
    assert [r["slug"] for r in by_owner.body["results"]] == ["acme-ntp-1.0.0"]


def test_get_releases_unknown_module_without_proxy(ops, backend):
    backend.add_release(make_archive("acme-ntp", "1.0.0"))
    resp = ops.get_releases(module="acme-missing")
    assert resp.code == 200
    assert resp.body["results"] == []
    assert resp.body["pagination"]["total"] == 0


def test_get_releases_with_proxy_returns_404(backend, tmp_path):
    ops = ReleaseOperations(backend, str(tmp_path), "https://forge.example.com")
    empty = ops.get_releases()
    assert empty.code == 404
    assert empty.body["errors"] == ["Did not retrieve any releases from the backend."]

    backend.add_release(make_archive("acme-ntp", "1.0.0"))
    unknown = ops.get_releases(module="acme-missing")
    assert unknown.code == 404
    assert unknown.body["errors"] == ["No module(s) found for given query."]

    no_match = ops.get_releases(owner="nobody")
    assert no_match.code == 404
    assert no_match.body["errors"] == ["No release(s) found for given query."]

    assert ops.get_releases().code == 200