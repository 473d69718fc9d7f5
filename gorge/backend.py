"""Module and release storage backed by a directory of release archives."""

from __future__ import annotations

import abc
import hashlib
import io
import json
import logging
import os
import shutil
import tarfile
import threading
import zlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional

from packaging.version import InvalidVersion, Version

from .metadata import ReleaseMetadata
from .slugs import check_module_slug, check_release_slug

_log = logging.getLogger(__name__)

DEFAULT_VERSION = "0.0.0"
METADATA_FILE = "metadata.json"
README_FILE = "README.md"
TAR_GZ_EXT = ".tar.gz"


class ModuleNotFoundError(LookupError):
    """No module with the requested slug is known."""


class ReleaseNotFoundError(LookupError):
    """No release with the requested slug is known."""


class InvalidReleaseError(ValueError):
    """A release archive or its metadata cannot be accepted."""


@dataclass
class Owner:
    """The user that owns a module."""

    uri: str = ""
    slug: str = ""
    username: str = ""
    gravatar_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "slug": self.slug,
            "username": self.username,
            "gravatar_id": self.gravatar_id,
        }


@dataclass
class ReleaseModule:
    """The module a release belongs to, as embedded in the release."""

    uri: str = ""
    slug: str = ""
    name: str = ""
    deprecated_at: Optional[str] = None
    owner: Owner = field(default_factory=Owner)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "slug": self.slug,
            "name": self.name,
            "deprecated_at": self.deprecated_at,
            "owner": self.owner.to_dict(),
        }


@dataclass
class ReleasePlan:
    """A plan shipped with a release, in its short form."""

    uri: str = ""
    name: str = ""
    private: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"uri": self.uri, "name": self.name, "private": self.private}


@dataclass
class Release:
    """A single version of a module."""

    uri: str = ""
    slug: str = ""
    module: ReleaseModule = field(default_factory=ReleaseModule)
    version: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    supported: bool = False
    pdk: bool = False
    file_uri: str = ""
    file_size: int = 0
    file_md5: str = ""
    file_sha256: str = ""
    readme: str = ""
    license: str = ""
    created_at: str = ""
    deleted_at: Optional[str] = None
    plans: list[ReleasePlan] = field(default_factory=list)
    tasks: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of the release."""
        return {
            "uri": self.uri,
            "slug": self.slug,
            "module": self.module.to_dict(),
            "version": self.version,
            "metadata": self.metadata,
            "tags": list(self.tags),
            "supported": self.supported,
            "pdk": self.pdk,
            "file_uri": self.file_uri,
            "file_size": self.file_size,
            "file_md5": self.file_md5,
            "file_sha256": self.file_sha256,
            "readme": self.readme,
            "license": self.license,
            "created_at": self.created_at,
            "deleted_at": self.deleted_at,
            "plans": [plan.to_dict() for plan in self.plans],
            "tasks": list(self.tasks),
        }


@dataclass
class ReleaseAbbreviated:
    """The short form of a release listed in a module."""

    uri: str = ""
    slug: str = ""
    version: str = ""
    supported: bool = False
    created_at: str = ""
    deleted_at: Optional[str] = None
    file_uri: str = ""
    file_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "slug": self.slug,
            "version": self.version,
            "supported": self.supported,
            "created_at": self.created_at,
            "deleted_at": self.deleted_at,
            "file_uri": self.file_uri,
            "file_size": self.file_size,
        }


@dataclass
class Module:
    """A module with its current release and the list of all releases."""

    uri: str = ""
    slug: str = ""
    name: str = ""
    downloads: int = 0
    created_at: str = ""
    updated_at: str = ""
    deprecated_at: Optional[str] = None
    deprecated_for: Optional[str] = None
    superseded_by: str = ""
    supported: bool = False
    endorsement: Optional[str] = None
    module_group: str = ""
    premium: bool = False
    owner: Owner = field(default_factory=Owner)
    current_release: Release = field(default_factory=Release)
    releases: list[ReleaseAbbreviated] = field(default_factory=list)
    feedback_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of the module."""
        return {
            "uri": self.uri,
            "slug": self.slug,
            "name": self.name,
            "downloads": self.downloads,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deprecated_at": self.deprecated_at,
            "deprecated_for": self.deprecated_for,
            "superseded_by": {"slug": self.superseded_by} if self.superseded_by else None,
            "supported": self.supported,
            "endorsement": self.endorsement,
            "module_group": self.module_group,
            "premium": self.premium,
            "owner": self.owner.to_dict(),
            "current_release": self.current_release.to_dict(),
            "releases": [release.to_dict() for release in self.releases],
            "feedback_score": self.feedback_score,
        }


def find_latest_version(releases: list[ReleaseAbbreviated]) -> str:
    """Return the highest version among *releases*, or ``0.0.0`` if empty.

    Versions that cannot be parsed are logged and skipped.
    """
    if not releases:
        return DEFAULT_VERSION

    latest = releases[0].version
    for release in releases[1:]:
        try:
            candidate = Version(release.version)
        except InvalidVersion:
            _log.warning("invalid version: %s", release.version)
            continue
        try:
            current = Version(latest)
        except InvalidVersion:
            _log.warning("invalid version: %s", latest)
            continue
        if candidate > current:
            latest = release.version
    return latest


def release_to_abbreviated(release: Release) -> ReleaseAbbreviated:
    """Return the short form of *release*."""
    return ReleaseAbbreviated(
        uri=release.uri,
        slug=release.slug,
        version=release.version,
        supported=release.supported,
        created_at=release.created_at,
        deleted_at=release.deleted_at,
        file_uri=release.file_uri,
        file_size=release.file_size,
    )


def metadata_to_release(metadata: ReleaseMetadata) -> Release:
    """Build a release from the metadata of its archive."""
    slug = f"{metadata.name}-{metadata.version}"
    return Release(
        slug=slug,
        uri=f"/v3/releases/{slug}",
        module=ReleaseModule(
            name=metadata.name,
            slug=metadata.name,
            uri=f"/v3/modules/{metadata.name}",
            owner=Owner(
                uri=f"/v3/users/{metadata.author}",
                slug=metadata.author,
                username=metadata.author,
                gravatar_id="",
            ),
            deprecated_at=None,
        ),
        version=metadata.version,
        metadata=metadata.to_dict(),
        tags=list(metadata.tags),
        supported=False,
        pdk=False,
    )


def module_from_release(release: Release) -> Module:
    """Build a new module whose only and current release is *release*."""
    parts = release.module.slug.split("-")
    if len(parts) < 2:
        raise InvalidReleaseError(f"invalid module slug: {release.module.slug}")
    now = str(datetime.now().astimezone())
    return Module(
        uri=f"/v3/modules/{release.module.name}",
        slug=release.module.slug,
        name=parts[1],
        downloads=0,
        created_at=now,
        updated_at=now,
        supported=release.supported,
        module_group="Gorge",
        premium=False,
        owner=release.module.owner,
        current_release=release,
        releases=[release_to_abbreviated(release)],
        feedback_score=0,
    )


def read_release_metadata(data: bytes) -> tuple[ReleaseMetadata, str]:
    """Extract the metadata and README from a gzipped tar archive.

    Returns the parsed metadata.json and the text of README.md. Raises
    InvalidReleaseError if the archive or its metadata is unusable.
    """
    if not data:
        raise InvalidReleaseError("empty data provided")

    try:
        archive = tarfile.open(fileobj=io.BytesIO(data), mode="r:gz")
    except (tarfile.TarError, OSError, EOFError, zlib.error) as exc:
        raise InvalidReleaseError(f"failed to create gzip reader: {exc}") from exc

    json_data = bytearray()
    readme = bytearray()
    metadata = ReleaseMetadata()
    try:
        with archive:
            for member in archive:
                if not member.isreg():
                    continue
                base = os.path.basename(member.name)
                if base not in (METADATA_FILE, README_FILE):
                    continue
                handle = archive.extractfile(member)
                content = handle.read() if handle is not None else b""
                if base == METADATA_FILE:
                    json_data.extend(content)
                    try:
                        metadata = ReleaseMetadata.from_dict(
                            json.loads(json_data.decode("utf-8"))
                        )
                    except (ValueError, UnicodeDecodeError) as exc:
                        raise InvalidReleaseError(str(exc)) from exc
                    if not check_module_slug(metadata.name):
                        raise InvalidReleaseError("invalid module name")
                else:
                    readme.extend(content)
    except (tarfile.TarError, OSError, EOFError, zlib.error) as exc:
        raise InvalidReleaseError(str(exc)) from exc

    return metadata, readme.decode("utf-8", errors="replace")


class Backend(abc.ABC):
    """Storage of modules and their releases."""

    @abc.abstractmethod
    def load_modules(self) -> None:
        """Load all modules into memory."""

    @abc.abstractmethod
    def get_all_modules(self) -> list[Module]:
        """Return every known module."""

    @abc.abstractmethod
    def get_module_by_slug(self, slug: str) -> Module:
        """Return the module with *slug* or raise ModuleNotFoundError."""

    @abc.abstractmethod
    def get_all_releases(self) -> list[Release]:
        """Return every known release."""

    @abc.abstractmethod
    def get_release_by_slug(self, slug: str) -> Release:
        """Return the release with *slug* or raise ReleaseNotFoundError."""

    @abc.abstractmethod
    def add_release(self, data: bytes) -> Release:
        """Store a release archive and return its release."""

    @abc.abstractmethod
    def delete_module_by_slug(self, slug: str) -> None:
        """Remove a module and all its releases."""

    @abc.abstractmethod
    def delete_release_by_slug(self, slug: str) -> None:
        """Remove a single release."""

    @abc.abstractmethod
    def update_module(self, module: Module) -> None:
        """Persist changes to a module."""


def _walk_files(path: str) -> Iterator[str]:
    """Yield every non-directory below *path* in lexical order."""
    if os.path.isdir(path) and not os.path.islink(path):
        for name in sorted(os.listdir(path)):
            yield from _walk_files(os.path.join(path, name))
    else:
        yield path


class FilesystemBackend(Backend):
    """Keeps release archives under a directory, one subdirectory per module."""

    def __init__(self, modules_dir: str) -> None:
        self.modules_dir = modules_dir
        self.modules: dict[str, Module] = {}
        self.releases: dict[str, list[Release]] = {}
        self._lock = threading.RLock()

    def load_modules(self) -> None:
        """Read every ``.tar.gz`` file below the modules directory."""
        os.lstat(self.modules_dir)
        for path in _walk_files(self.modules_dir):
            if not os.path.basename(path).endswith(TAR_GZ_EXT):
                continue
            _log.debug("Reading %s", path)
            with open(path, "rb") as handle:
                data = handle.read()
            self.add_release(data)

    def get_all_modules(self) -> list[Module]:
        with self._lock:
            return list(self.modules.values())

    def get_module_by_slug(self, slug: str) -> Module:
        with self._lock:
            try:
                return self.modules[slug]
            except KeyError:
                raise ModuleNotFoundError("module not found") from None

    def get_all_releases(self) -> list[Release]:
        with self._lock:
            return [r for releases in self.releases.values() for r in releases]

    def get_release_by_slug(self, slug: str) -> Release:
        with self._lock:
            for releases in self.releases.values():
                for release in releases:
                    if release.slug == slug:
                        return release
        raise ReleaseNotFoundError(f"release {slug} not found")

    def add_release(self, data: bytes) -> Release:
        """Register the release archive *data* and store it on disk.

        A release that is already known is returned unchanged.
        """
        with self._lock:
            metadata, readme = read_release_metadata(data)

            name = metadata.name
            if "/" in name or "\\" in name or ".." in name:
                raise InvalidReleaseError("invalid module name")

            release_slug = f"{name}-{metadata.version}"
            if not check_release_slug(release_slug):
                raise InvalidReleaseError("invalid release slug")

            for known in self.releases.get(name, []):
                if known.slug == release_slug:
                    return known

            release = metadata_to_release(metadata)
            release.file_md5 = hashlib.md5(data).hexdigest()
            release.file_sha256 = hashlib.sha256(data).hexdigest()
            release.file_uri = f"/v3/files/{release_slug}{TAR_GZ_EXT}"
            release.file_size = len(data)
            release.readme = readme
            release.license = metadata.license

            module = self.modules.get(name)
            if module is None:
                self.modules[name] = module_from_release(release)
            else:
                module.releases.append(release_to_abbreviated(release))
                if find_latest_version(module.releases) == release.version:
                    module.current_release = release
            self.releases.setdefault(name, []).append(release)

            module_dir = os.path.join(self.modules_dir, name)
            os.makedirs(module_dir, exist_ok=True)
            release_path = os.path.join(module_dir, f"{release_slug}{TAR_GZ_EXT}")
            if not os.path.exists(release_path):
                with open(release_path, "wb") as handle:
                    handle.write(data)

            return release

    def delete_module_by_slug(self, slug: str) -> None:
        with self._lock:
            module_path = os.path.join(self.modules_dir, slug)
            if os.path.lexists(module_path):
                if os.path.isdir(module_path) and not os.path.islink(module_path):
                    shutil.rmtree(module_path)
                else:
                    os.remove(module_path)
            self.releases.pop(slug, None)
            self.modules.pop(slug, None)

    def delete_release_by_slug(self, slug: str) -> None:
        with self._lock:
            for name, releases in self.releases.items():
                kept = []
                for release in releases:
                    if release.slug == slug:
                        os.remove(
                            os.path.join(
                                self.modules_dir,
                                release.module.slug,
                                f"{slug}{TAR_GZ_EXT}",
                            )
                        )
                    else:
                        kept.append(release)
                self.releases[name] = kept

                module = self.modules[name]
                module.releases = [a for a in module.releases if a.slug != slug]

                if module.current_release.slug == slug:
                    latest = find_latest_version(module.releases)
                    for candidate in kept:
                        if candidate.version == latest:
                            module.current_release = candidate
                            break

    def update_module(self, module: Module) -> None:
        """Write *module* as JSON next to the module directories."""
        path = os.path.join(self.modules_dir, f"{module.slug}.json")
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(module.to_dict(), handle)