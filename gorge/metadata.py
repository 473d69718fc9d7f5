"""The metadata.json document carried inside a module release archive."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _expect_dict(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be an object, got {type(value).__name__}")
    return value


def _string(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


def _array(data: dict, key: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"field {key!r} must be an array, got {type(value).__name__}")
    return value


def _strings(data: dict, key: str) -> list[str]:
    items = _array(data, key)
    for item in items:
        if not isinstance(item, str):
            raise ValueError(f"field {key!r} must hold only strings")
    return list(items)


@dataclass
class SupportedOS:
    """An operating system a module supports, with optional releases."""

    name: str = ""
    releases: list[str] = field(default_factory=list)


@dataclass
class ModuleDependency:
    """A dependency on another module, with an optional version range."""

    name: str = ""
    version_requirement: str = ""


ModuleRequirement = ModuleDependency


def _dependency_from(value: Any) -> ModuleDependency:
    data = _expect_dict(value, "dependency")
    return ModuleDependency(
        name=_string(data, "name"),
        version_requirement=_string(data, "version_requirement"),
    )


def _dependency_to(dep: ModuleDependency) -> dict[str, Any]:
    out: dict[str, Any] = {"name": dep.name}
    if dep.version_requirement:
        out["version_requirement"] = dep.version_requirement
    return out


def _os_from(value: Any) -> SupportedOS:
    data = _expect_dict(value, "operatingsystem_support entry")
    return SupportedOS(
        name=_string(data, "operatingsystem"),
        releases=_strings(data, "operatingsystemrelease"),
    )


def _os_to(entry: SupportedOS) -> dict[str, Any]:
    out: dict[str, Any] = {"operatingsystem": entry.name}
    if entry.releases:
        out["operatingsystemrelease"] = list(entry.releases)
    return out


@dataclass
class ReleaseMetadata:
    """Parsed contents of a release's metadata.json."""

    name: str = ""
    version: str = ""
    author: str = ""
    license: str = ""
    summary: str = ""
    source: str = ""
    dependencies: list[ModuleDependency] = field(default_factory=list)
    requirements: list[ModuleDependency] = field(default_factory=list)
    project_url: str = ""
    issues_url: str = ""
    operatingsystem_support: list[SupportedOS] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> ReleaseMetadata:
        """Build metadata from a decoded JSON object.

        Missing or null fields take their empty value; fields of the wrong
        type raise ValueError.
        """
        data = _expect_dict(data, "metadata")
        return cls(
            name=_string(data, "name"),
            version=_string(data, "version"),
            author=_string(data, "author"),
            license=_string(data, "license"),
            summary=_string(data, "summary"),
            source=_string(data, "source"),
            dependencies=[_dependency_from(d) for d in _array(data, "dependencies")],
            requirements=[_dependency_from(r) for r in _array(data, "requirements")],
            project_url=_string(data, "project_url"),
            issues_url=_string(data, "issues_url"),
            operatingsystem_support=[
                _os_from(o) for o in _array(data, "operatingsystem_support")
            ],
            tags=_strings(data, "tags"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form, leaving out empty optional fields."""
        out: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "author": self.author,
            "license": self.license,
            "summary": self.summary,
            "source": self.source,
            "dependencies": [_dependency_to(d) for d in self.dependencies],
        }
        if self.requirements:
            out["requirements"] = [_dependency_to(r) for r in self.requirements]
        if self.project_url:
            out["project_url"] = self.project_url
        if self.issues_url:
            out["issues_url"] = self.issues_url
        if self.operatingsystem_support:
            out["operatingsystem_support"] = [
                _os_to(o) for o in self.operatingsystem_support
            ]
        if self.tags:
            out["tags"] = list(self.tags)
        return out