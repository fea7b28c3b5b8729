"""HTTP endpoints of the gateway.

Every endpoint except ``/health`` requires the shared secret, passed in an
``x-api-key`` style header or as ``Authorization: Bearer <key>``. Failures
are returned as ``{"error": ..., "kind": ...}`` with status 400, or 401 for
the secret check.
"""

import logging
import os
import re
import secrets
import sys
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import Headers

from repogate.errors import RepoGateError, Unauthorized, ValidationError
from repogate.git.client import ObjectStoreClient
from repogate.git.commit import DEFAULT_BLOB_CONCURRENCY, commit_files
from repogate.git.refs import create_branch
from repogate.git.upsert import read_file, upsert_file
from repogate.models import (
    BulkUpsertRequest,
    CreateBranchRequest,
    GetFileRequest,
    UpsertFileRequest,
    encode_content,
)

LOGLEVEL = os.environ.get("REPOGATE_LOGLEVEL", "WARNING").upper()
logging.basicConfig(level=LOGLEVEL, stream=sys.stdout)
logger = logging.getLogger("http")
logger.setLevel(LOGLEVEL)

API_KEY_HEADERS = ["x-api-key", "api-key", "x-api_key", "apikey"]
BEARER_PREFIX = re.compile(r"^Bearer\s+", re.IGNORECASE)


def extract_api_key(headers: Headers) -> Optional[str]:
    """Return the shared secret presented with a request, if any."""
    for name in API_KEY_HEADERS:
        value = headers.get(name)
        if value:
            return value
    authorization = headers.get("authorization")
    if authorization:
        return BEARER_PREFIX.sub("", authorization)
    return None


async def read_json(request: Request) -> dict:
    """Read the request body as a JSON object; anything else reads as empty."""
    try:
        payload = await request.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def parse_body(model, payload: dict):
    """Validate a request body, raising ``ValidationError`` on bad input."""
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        problems = [
            error
            for error in exc.errors()
            if error["type"] not in ("missing", "string_too_short", "too_short")
        ]
        if problems:
            location = ".".join(str(part) for part in problems[0]["loc"])
            message = problems[0]["msg"]
            if location:
                message = f"{location}: {message}"
            raise ValidationError(message)
        raise ValidationError(model.required_message)


def register_error_handlers(app: FastAPI):
    """Render gateway errors as structured JSON payloads."""

    @app.exception_handler(RepoGateError)
    async def handle_gateway_error(request: Request, exc: RepoGateError):
        if not isinstance(exc, Unauthorized):
            logger.info(f"{request.url.path} failed ({exc.kind}): {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_gateway_router(
    client: ObjectStoreClient,
    api_key: Optional[str],
    blob_concurrency: int = DEFAULT_BLOB_CONCURRENCY,
) -> APIRouter:
    """Create the gateway endpoints.

    Args:
        client: Object store client shared by all endpoints.
        api_key: Shared secret callers must present. When empty, every
            protected request is rejected.
        blob_concurrency: Maximum parallel blob writes per bulk commit.
    """
    router = APIRouter()

    async def require_api_key(request: Request):
        candidate = extract_api_key(request.headers)
        if not api_key or not candidate or not secrets.compare_digest(
            candidate.encode("utf-8"), api_key.encode("utf-8")
        ):
            logger.warning(f"Rejected unauthenticated request to {request.url.path}")
            raise Unauthorized()

    protected = [Depends(require_api_key)]

    @router.get("/health")
    async def health():
        return {"ok": True}

    @router.get("/whoami", dependencies=protected)
    async def whoami():
        return await client.whoami()

    @router.post("/create-branch", dependencies=protected)
    async def create_branch_endpoint(request: Request):
        body = parse_body(CreateBranchRequest, await read_json(request))
        result = await create_branch(client, body.repo_id, body.branch, body.from_)
        return result.model_dump(by_alias=True)

    @router.post("/upsert-file", dependencies=protected)
    async def upsert_file_endpoint(request: Request):
        body = parse_body(UpsertFileRequest, await read_json(request))
        result = await upsert_file(
            client,
            body.repo_id,
            body.branch,
            body.path,
            body.message,
            encode_content(body.content, body.encoding),
        )
        return result.model_dump()

    @router.post("/bulk-upsert", dependencies=protected)
    async def bulk_upsert_endpoint(request: Request):
        body = parse_body(BulkUpsertRequest, await read_json(request))
        result = await commit_files(
            client,
            body.repo_id,
            body.branch,
            body.message,
            body.files,
            concurrency=blob_concurrency,
        )
        return result.model_dump()

    @router.post("/get-file", dependencies=protected)
    async def get_file_endpoint(request: Request):
        body = parse_body(GetFileRequest, await read_json(request))
        entry = await read_file(client, body.repo_id, body.path, body.branch)
        content = entry.content.decode("utf-8", errors="replace") if entry.content else ""
        return {
            "path": entry.path,
            "sha": entry.sha,
            "size": entry.size,
            "content": content,
        }

    return router
