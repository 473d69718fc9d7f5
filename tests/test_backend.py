import hashlib
import io
import json
import os
import tarfile

import pytest

from gorge.backend import (
    FilesystemBackend,
    InvalidReleaseError,
    ModuleNotFoundError,
    ReleaseAbbreviated,
    ReleaseNotFoundError,
    find_latest_version,
    metadata_to_release,
    module_from_release,
    read_release_metadata,
    release_to_abbreviated,
)
from gorge.metadata import ReleaseMetadata


def make_archive(name="puppetlabs-stdlib", version="1.0.0", author="puppetlabs",
                 readme="# stdlib", license="Apache-2.0"):
    metadata = {
        "name": name,
        "version": version,
        "author": author,
        "license": license,
        "summary": "",
        "source": "",
        "dependencies": [],
    }
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        def add(path, content):
            info = tarfile.TarInfo(path)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))

        add(f"{name}-{version}/metadata.json", json.dumps(metadata).encode())
        if readme is not None:
            add(f"{name}-{version}/README.md", readme.encode())
    return buf.getvalue()


@pytest.fixture
def backend(tmp_path):
    return FilesystemBackend(str(tmp_path))


def test_read_release_metadata_returns_metadata_and_readme():
    metadata, readme = read_release_metadata(make_archive(readme="hello"))
    assert metadata.name == "puppetlabs-stdlib"
    assert metadata.version == "1.0.0"
    assert readme == "hello"


def test_read_release_metadata_empty_data():
    with pytest.raises(InvalidReleaseError, match="empty data provided"):
        read_release_metadata(b"")


def test_read_release_metadata_not_gzip():
    with pytest.raises(InvalidReleaseError, match="failed to create gzip reader"):
        read_release_metadata(b"this is not an archive")


def test_read_release_metadata_invalid_module_name():
    with pytest.raises(InvalidReleaseError, match="invalid module name"):
        read_release_metadata(make_archive(name="Bad_Name"))


def test_add_release_sets_file_fields(backend, tmp_path):
    data = make_archive()
    release = backend.add_release(data)
    assert release.slug == "puppetlabs-stdlib-1.0.0"
    assert release.file_uri == f"/v3/files/{release.slug}.tar.gz"
    assert release.file_size == len(data)
    assert release.file_md5 == hashlib.md5(data).hexdigest()
    assert release.file_sha256 == hashlib.sha256(data).hexdigest()
    assert release.license == "Apache-2.0"
    stored = tmp_path / "puppetlabs-stdlib" / "puppetlabs-stdlib-1.0.0.tar.gz"
    assert stored.read_bytes() == data


def test_add_release_twice_returns_known_release(backend):
    first = backend.add_release(make_archive())
    second = backend.add_release(make_archive())
    assert first is second
    assert len(backend.get_all_releases()) == 1


def test_add_release_rejects_slash_in_name(backend):
    with pytest.raises(InvalidReleaseError, match="invalid module name"):
        backend.add_release(make_archive(name="puppetlabs/stdlib"))


def test_add_release_rejects_bad_version(backend):
    with pytest.raises(InvalidReleaseError, match="invalid release slug"):
        backend.add_release(make_archive(version="latest"))


def test_newer_release_becomes_current(backend):
    backend.add_release(make_archive(version="1.0.0"))
    backend.add_release(make_archive(version="2.0.0"))
    backend.add_release(make_archive(version="1.5.0"))
    module = backend.get_module_by_slug("puppetlabs-stdlib")
    assert module.current_release.version == "2.0.0"
    assert [r.version for r in module.releases] == ["1.0.0", "2.0.0", "1.5.0"]


def test_lookups_raise_when_missing(backend):
    with pytest.raises(ModuleNotFoundError):
        backend.get_module_by_slug("nobody-nothing")
    with pytest.raises(ReleaseNotFoundError):
        backend.get_release_by_slug("nobody-nothing-1.0.0")


def test_get_release_by_slug(backend):
    added = backend.add_release(make_archive())
    assert backend.get_release_by_slug("puppetlabs-stdlib-1.0.0") is added


def test_delete_release_updates_current(backend, tmp_path):
    backend.add_release(make_archive(version="1.0.0"))
    backend.add_release(make_archive(version="2.0.0"))
    backend.delete_release_by_slug("puppetlabs-stdlib-2.0.0")
    module = backend.get_module_by_slug("puppetlabs-stdlib")
    assert module.current_release.version == "1.0.0"
    assert [r.slug for r in module.releases] == ["puppetlabs-stdlib-1.0.0"]
    assert not (tmp_path / "puppetlabs-stdlib" / "puppetlabs-stdlib-2.0.0.tar.gz").exists()
    with pytest.raises(ReleaseNotFoundError):
        backend.get_release_by_slug("puppetlabs-stdlib-2.0.0")


def test_delete_module_removes_everything(backend, tmp_path):
    backend.add_release(make_archive())
    backend.delete_module_by_slug("puppetlabs-stdlib")
    assert backend.get_all_modules() == []
    assert backend.get_all_releases() == []
    assert not (tmp_path / "puppetlabs-stdlib").exists()


def test_load_modules_reads_archives(tmp_path):
    writer = FilesystemBackend(str(tmp_path))
    writer.add_release(make_archive(version="1.0.0"))
    writer.add_release(make_archive(name="acme-web", author="acme"))
    reader = FilesystemBackend(str(tmp_path))
    reader.load_modules()
    assert sorted(m.slug for m in reader.get_all_modules()) == ["acme-web", "puppetlabs-stdlib"]
    assert len(reader.get_all_releases()) == 2


def test_load_modules_missing_dir(tmp_path):
    backend = FilesystemBackend(str(tmp_path / "missing"))
    with pytest.raises(FileNotFoundError):
        backend.load_modules()


def test_find_latest_version():
    assert find_latest_version([]) == "0.0.0"
    releases = [ReleaseAbbreviated(version=v) for v in ["1.2.0", "1.10.0", "1.9.9"]]
    assert find_latest_version(releases) == "1.10.0"


def test_find_latest_version_skips_invalid():
    releases = [ReleaseAbbreviated(version=v) for v in ["1.0.0", "garbage", "0.5.0"]]
    assert find_latest_version(releases) == "1.0.0"


def test_metadata_to_release_and_module():
    metadata = ReleaseMetadata(name="acme-web", version="3.1.4", author="acme", tags=["http"])
    release = metadata_to_release(metadata)
    assert release.uri == "/v3/releases/acme-web-3.1.4"
    assert release.module.uri == "/v3/modules/acme-web"
    assert release.module.owner.uri == "/v3/users/acme"
    assert release.metadata == metadata.to_dict()
    module = module_from_release(release)
    assert module.name == "web"
    assert module.module_group == "Gorge"
    assert module.current_release is release
    assert module.releases == [release_to_abbreviated(release)]


def test_update_module_writes_json(backend, tmp_path):
    backend.add_release(make_archive())
    module = backend.get_module_by_slug("puppetlabs-stdlib")
    module.deprecated_for = "obsolete"
    backend.update_module(module)
    written = json.loads((tmp_path / "puppetlabs-stdlib.json").read_text())
    assert written["slug"] == "puppetlabs-stdlib"
    assert written["deprecated_for"] == "obsolete"
    assert written == module.to_dict()


def test_release_to_dict_round_trips_through_json(backend):
    release = backend.add_release(make_archive())
    encoded = json.loads(json.dumps(release.to_dict()))
    assert encoded["slug"] == release.slug
    assert encoded["module"]["owner"]["username"] == "puppetlabs"
    assert os.path.basename(encoded["file_uri"]) == "puppetlabs-stdlib-1.0.0.tar.gz"