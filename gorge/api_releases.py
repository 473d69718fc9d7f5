"""Operations of the forge API on module releases."""

from __future__ import annotations

import base64
import binascii
import http
import logging
import os
from typing import Any, BinaryIO, Optional, Union
from urllib.parse import urlencode

from .api_modules import ApiResponse, error_body
from .backend import (
    Backend,
    ModuleNotFoundError,
    Release,
    ReleaseNotFoundError,
    ReleasePlan,
)
from .slugs import check_release_slug

_log = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
TAR_GZ_EXT = ".tar.gz"

_NOT_FOUND = http.HTTPStatus.NOT_FOUND.phrase
_SERVER_ERROR = http.HTTPStatus.INTERNAL_SERVER_ERROR.phrase
_BACKEND_ERRORS = (OSError, LookupError, ValueError)


def full_release_plan(plan: ReleasePlan) -> dict[str, Any]:
    """Expand a short plan entry; ``module::foo::bar`` lives in ``plans/foo/bar.pp``."""
    plan_file = "plans/{}.pp".format("/".join(plan.name.split("::")[1:]))
    return {
        "uri": plan.uri,
        "name": plan.name,
        "private": plan.private,
        "filename": plan_file,
        "plan_metadata": {
            "name": plan.name,
            "private": plan.private,
            "file": plan_file,
        },
    }


def _releases_url(params: dict[str, Any]) -> str:
    return "/v3/releases?" + urlencode(sorted(params.items()))


class ReleaseOperations:
    """Handlers for the release endpoints."""

    def __init__(
        self, backend: Backend, modules_dir: str, fallback_proxy: str = ""
    ) -> None:
        self.backend = backend
        self.modules_dir = modules_dir
        self.fallback_proxy = fallback_proxy

    def add_release(self, file: Union[str, bytes]) -> ApiResponse:
        """Store a release archive given as base64 text."""
        if not file:
            return ApiResponse(
                400, error_body("No file data provided", ["file data is required"])
            )
        try:
            archive = base64.b64decode(file, validate=True)
        except (binascii.Error, ValueError) as exc:
            return ApiResponse(
                400, error_body("Invalid base64 encoded data", [str(exc)])
            )
        try:
            release = self.backend.add_release(archive)
        except _BACKEND_ERRORS as exc:
            return ApiResponse(400, error_body("Failed to add release", [str(exc)]))
        return ApiResponse(
            201,
            {"uri": release.uri, "file_uri": release.file_uri, "slug": release.slug},
        )

    def delete_release(self, release_slug: str, reason: str = "") -> ApiResponse:
        """Delete a single release."""
        if not check_release_slug(release_slug):
            message = "invalid release slug"
            return ApiResponse(400, error_body(message, [message]))
        try:
            self.backend.delete_release_by_slug(release_slug)
        except _BACKEND_ERRORS as exc:
            return ApiResponse(500, error_body(str(exc), [str(exc)]))
        return ApiResponse(204)

    def get_file(self, filename: str) -> ApiResponse:
        """Open the archive of a release; the body is a binary file object."""
        if not filename:
            return ApiResponse(
                400, error_body("No filename provided", ["filename is required"])
            )
        if "/" in filename or "\\" in filename or ".." in filename:
            return ApiResponse(
                400,
                error_body("Invalid filename", ["filename contains invalid characters"]),
            )

        release_slug = filename.removesuffix(TAR_GZ_EXT)
        if not check_release_slug(release_slug):
            return ApiResponse(
                400,
                error_body("Invalid release slug format", ["release slug is invalid"]),
            )

        try:
            release = self.backend.get_release_by_slug(release_slug)
        except ReleaseNotFoundError:
            return ApiResponse(
                404, error_body("File not found", ["the file does not exist"])
            )
        except _BACKEND_ERRORS as exc:
            return ApiResponse(
                500, error_body("Failed to resolve release", [str(exc)])
            )

        path = os.path.join(self.modules_dir, release.module.slug, filename)
        try:
            handle: BinaryIO = open(path, "rb")
        except FileNotFoundError:
            return ApiResponse(
                404, error_body("File not found", ["the file does not exist"])
            )
        except OSError as exc:
            return ApiResponse(500, error_body("Failed to open file", [str(exc)]))
        return ApiResponse(200, handle)

    def _lookup(self, release_slug: str, missing: str) -> Union[Release, ApiResponse]:
        try:
            return self.backend.get_release_by_slug(release_slug)
        except ReleaseNotFoundError:
            return ApiResponse(404, error_body(_NOT_FOUND, [missing]))
        except _BACKEND_ERRORS:
            return ApiResponse(
                500,
                error_body(_SERVER_ERROR, ["error while reading release metadata"]),
            )

    def get_release(self, release_slug: str) -> ApiResponse:
        """Return a single release."""
        found = self._lookup(release_slug, "release not found")
        if isinstance(found, ApiResponse):
            return found
        return ApiResponse(200, found.to_dict())

    def get_release_plan(self, release_slug: str, plan_name: str) -> ApiResponse:
        """Return one plan of a release."""
        found = self._lookup(release_slug, "plan not found")
        if isinstance(found, ApiResponse):
            return found
        for plan in found.plans:
            if plan.name == plan_name:
                return ApiResponse(200, full_release_plan(plan))
        return ApiResponse(404, error_body(_NOT_FOUND, ["plan not found"]))

    def get_release_plans(self, release_slug: str) -> ApiResponse:
        """Return all plans of a release."""
        found = self._lookup(release_slug, "plan not found")
        if isinstance(found, ApiResponse):
            return found
        return ApiResponse(
            200,
            {
                "pagination": {},
                "results": [full_release_plan(plan) for plan in found.plans],
            },
        )

    def get_releases(
        self,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        module: str = "",
        owner: str = "",
    ) -> ApiResponse:
        """List releases, optionally of one module or owner, one page at a time.

        With a fallback proxy configured, an empty answer becomes a 404 so
        that the request is forwarded upstream.
        """
        if limit <= 0:
            limit = DEFAULT_LIMIT
        if offset < 0:
            offset = 0

        try:
            all_releases = self.backend.get_all_releases()
        except _BACKEND_ERRORS:
            all_releases = []

        params: dict[str, Any] = {}
        if module:
            params["module"] = module
        if owner:
            params["owner"] = owner
        params["offset"] = offset
        params["limit"] = limit
        current = _releases_url(params)

        if self.fallback_proxy and not all_releases:
            _log.debug(
                "Could not find *any* releases in the backend, "
                "returning 404 so we can proxy if desired"
            )
            return ApiResponse(
                404,
                error_body(
                    "No releases found",
                    ["Did not retrieve any releases from the backend."],
                ),
            )

        if module:
            try:
                self.backend.get_module_by_slug(module)
            except ModuleNotFoundError:
                _log.debug(
                    "Could not find module with slug '%s' in backend, "
                    "returning 404 so we can proxy if desired",
                    module,
                )
                if self.fallback_proxy:
                    return ApiResponse(
                        404,
                        error_body(
                            "No releases found",
                            ["No module(s) found for given query."],
                        ),
                    )
                return ApiResponse(
                    200,
                    {
                        "pagination": {
                            "limit": limit,
                            "offset": offset,
                            "first": current,
                            "previous": None,
                            "current": current,
                            "next": None,
                            "total": 0,
                        },
                        "results": [],
                    },
                )

        filtered = [
            r
            for r in all_releases
            if (not module or r.module.slug == module)
            and (not owner or r.module.owner.slug == owner)
        ]
        results = filtered[offset : offset + limit]

        if self.fallback_proxy and not results:
            if module:
                _log.debug("No releases for '%s' found in backend", module)
            else:
                _log.debug("No releases found in backend")
            return ApiResponse(
                404,
                error_body(
                    "No releases found", ["No release(s) found for given query."]
                ),
            )

        first = _releases_url({**params, "offset": 0})
        next_offset = offset + len(results)
        next_url: Optional[str] = None
        if next_offset < len(filtered):
            next_url = _releases_url({**params, "offset": next_offset})
        previous: Optional[str] = None
        prev_offset = offset - limit
        if prev_offset >= 0:
            previous = _releases_url({**params, "offset": prev_offset})

        return ApiResponse(
            200,
            {
                "pagination": {
                    "limit": limit,
                    "offset": offset,
                    "first": first,
                    "previous": previous,
                    "current": current,
                    "next": next_url,
                    "total": len(filtered),
                },
                "results": [r.to_dict() for r in results],
            },
        )