"""Operations of the forge API on modules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional
from urllib.parse import urlencode

from .backend import Backend, Module, ModuleNotFoundError
from .slugs import check_module_slug

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
DEFAULT_OFFSET = 0

_BACKEND_ERRORS = (OSError, LookupError, ValueError)


@dataclass
class ApiResponse:
    """A status code and a JSON-ready body (or None for an empty body)."""

    code: int
    body: Any = None


def error_body(message: str, errors: Iterable[str]) -> dict[str, Any]:
    """Return an error document, leaving out empty fields."""
    out: dict[str, Any] = {}
    if message:
        out["message"] = message
    errors = list(errors)
    if errors:
        out["errors"] = errors
    return out


def _modules_url(limit: int, offset: int) -> str:
    return "/v3/modules?" + urlencode({"limit": limit, "offset": offset})


class ModuleOperations:
    """Handlers for the module endpoints."""

    def __init__(self, backend: Backend) -> None:
        self.backend = backend

    def delete_module(self, module_slug: str, reason: str = "") -> ApiResponse:
        """Delete a module with all its releases."""
        if not check_module_slug(module_slug):
            message = "invalid module slug"
            return ApiResponse(400, error_body(message, [message]))
        try:
            self.backend.delete_module_by_slug(module_slug)
        except _BACKEND_ERRORS as exc:
            return ApiResponse(500, error_body(str(exc), [str(exc)]))
        return ApiResponse(204)

    def deprecate_module(
        self,
        module_slug: str,
        reason: Optional[str] = None,
        replacement_slug: Optional[str] = None,
    ) -> ApiResponse:
        """Mark a module as deprecated, optionally naming its replacement."""
        if not check_module_slug(module_slug):
            message = "invalid module slug"
            return ApiResponse(400, error_body(message, [message]))
        try:
            module = self.backend.get_module_by_slug(module_slug)
        except ModuleNotFoundError:
            return ApiResponse(
                404, error_body("Module not found", ["Module could not be found"])
            )

        module.deprecated_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        module.deprecated_for = reason
        if replacement_slug:
            module.superseded_by = replacement_slug

        try:
            self.backend.update_module(module)
        except _BACKEND_ERRORS as exc:
            return ApiResponse(500, error_body("Failed to deprecate module", [str(exc)]))
        return ApiResponse(204)

    def get_module(self, module_slug: str) -> ApiResponse:
        """Return a single module."""
        try:
            module = self.backend.get_module_by_slug(module_slug)
        except ModuleNotFoundError:
            return ApiResponse(
                404, error_body("Not Found", ["Module could not be found"])
            )
        return ApiResponse(200, module.to_dict())

    def get_modules(
        self,
        limit: int = DEFAULT_LIMIT,
        offset: int = DEFAULT_OFFSET,
        query: str = "",
        tag: str = "",
        owner: str = "",
        with_tasks: bool = False,
        with_plans: bool = False,
        with_pdk: bool = False,
        premium: bool = False,
        exclude_premium: bool = False,
        endorsements: Optional[Iterable[str]] = None,
    ) -> ApiResponse:
        """List modules matching the filters, one page at a time."""
        if limit <= 0:
            limit = DEFAULT_LIMIT
        elif limit > MAX_LIMIT:
            limit = MAX_LIMIT
        if offset < 0:
            offset = DEFAULT_OFFSET

        try:
            all_modules = self.backend.get_all_modules()
        except _BACKEND_ERRORS as exc:
            return ApiResponse(500, error_body("Failed to fetch modules", [str(exc)]))

        if offset >= len(all_modules):
            return ApiResponse(
                404,
                error_body(
                    "Invalid offset",
                    ["The given offset is larger than the total number of modules"],
                ),
            )

        endorsed = list(endorsements or [])
        filters: list[Callable[[Module], bool]] = []
        if query:
            filters.append(lambda m: query in m.slug or query in m.owner.slug)
        if tag:
            filters.append(lambda m: tag in m.current_release.tags)
        if owner:
            filters.append(lambda m: m.owner.username == owner)
        if with_tasks:
            filters.append(lambda m: bool(m.current_release.tasks))
        if with_plans:
            filters.append(lambda m: bool(m.current_release.plans))
        if with_pdk:
            filters.append(lambda m: m.current_release.pdk)
        if premium:
            filters.append(lambda m: m.premium)
        if exclude_premium:
            filters.append(lambda m: not m.premium)
        if endorsed:
            filters.append(lambda m: m.endorsement is not None and m.endorsement in endorsed)

        filtered = [m for m in all_modules[offset:] if all(f(m) for f in filters)]
        results = filtered[:limit]

        return ApiResponse(
            200,
            {
                "pagination": {
                    "limit": limit,
                    "offset": offset,
                    "first": _modules_url(limit, 0),
                    "previous": None,
                    "current": _modules_url(limit, offset),
                    "next": _modules_url(limit, offset + len(results)),
                    "total": len(all_modules),
                },
                "results": [m.to_dict() for m in results],
            },
        )