"""FastAPI server for the wiki's GitHub-Issues-backed data endpoints."""
from __future__ import annotations

import hashlib
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Callable, Iterator

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from slayer_wiki.admin.bot import AUTHENTICATED_ACTIONS, BotActions, parse_bot_action
from slayer_wiki.admin.permissions import PermissionGate, PermissionList
from slayer_wiki.config import Settings
from slayer_wiki.donations.paypal import CertFetcher, PayPalWebhookHandler, fetch_certificate
from slayer_wiki.env import load_dotenv
from slayer_wiki.errors import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ValidationError,
    WikiError,
)
from slayer_wiki.github.client import GitHubApiError, GitHubClient
from slayer_wiki.github.repo import GitHubRepo, IssueTracker
from slayer_wiki.profiles.display_names import DisplayNameRegistry
from slayer_wiki.profiles.moderation import Moderator, moderator_for
from slayer_wiki.records.store import RecordStore
from slayer_wiki.records.types import (
    USER_DATA_TYPES,
    DataType,
    config_for,
    parse_data_type,
)
from slayer_wiki.records.validation import (
    validate_build_data,
    validate_grid_submission,
    validate_item_id,
    validate_request_body_size,
    validate_user_id,
    validate_username,
)

logger = logging.getLogger(__name__)

TrackerFactory = Callable[[], IssueTracker]
UserLookup = Callable[[str], dict[str, Any]]


class SaveDataInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str | None = None
    username: str | None = None
    user_id: int | str | None = Field(default=None, alias="userId")
    data: dict[str, Any] | None = None
    spirit_id: str | None = Field(default=None, alias="spiritId")
    replace: bool = False


class DeleteDataInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str | None = None
    item_id: str | None = Field(default=None, alias="itemId")
    spirit_id: str | None = Field(default=None, alias="spiritId")


class DisplayNameInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str | None = None
    user_id: int | str | None = Field(default=None, alias="userId")
    display_name: str | None = Field(default=None, alias="displayName")


def configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    load_dotenv()
    configure_logging()
    settings = Settings.from_env()
    if not (settings.bot_token and settings.repo_owner and settings.repo_name):
        logger.warning("GitHub storage is not configured; data endpoints will answer 500")
    yield


app = FastAPI(
    title="Slayer Wiki API",
    description="Builds, spirit collections, grid submissions, display names and admin lists stored in GitHub Issues",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# -- errors ---------------------------------------------------------------


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def _first_validation_message(errors: list[Any]) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))


@app.exception_handler(WikiError)
async def wiki_error_handler(request: Request, exc: WikiError) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        logger.error("%s %s: %s", request.method, request.url.path, exc.message)
        return _error(500, "Server configuration error")
    if exc.status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(400, _first_validation_message(list(exc.errors())))


@app.exception_handler(PydanticValidationError)
async def model_validation_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
    return _error(400, _first_validation_message(list(exc.errors())))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# -- dependencies ---------------------------------------------------------


def get_settings() -> Settings:
    return Settings.from_env()


def get_tracker_factory(settings: Settings = Depends(get_settings)) -> Iterator[TrackerFactory]:
    """Yield a factory so handlers validate input before touching configuration."""
    clients: list[GitHubClient] = []

    def factory() -> IssueTracker:
        token, owner, repo = settings.require_github()
        client = GitHubClient(token=token, base_url=settings.github_api_url)
        clients.append(client)
        return GitHubRepo(client, owner=owner, repo=repo)

    try:
        yield factory
    finally:
        for client in clients:
            client.close()


def get_user_lookup(settings: Settings = Depends(get_settings)) -> UserLookup:
    def lookup(token: str) -> dict[str, Any]:
        with GitHubClient(token=token, base_url=settings.github_api_url) as client:
            return client.get_authenticated_user()

    return lookup


def get_cert_fetcher() -> CertFetcher:
    return fetch_certificate


def get_moderator(settings: Settings = Depends(get_settings)) -> Moderator:
    return moderator_for(settings.openai_api_key)


async def read_raw_body(request: Request) -> bytes:
    raw = await request.body()
    validate_request_body_size(raw)
    return raw


async def read_json_body(raw: bytes = Depends(read_raw_body)) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        raise ValidationError("Request body must be valid JSON") from None
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def bearer_token(authorization: str | None = Header(default=None)) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def client_ip(request: Request) -> str:
    headers = request.headers
    if headers.get("cf-connecting-ip"):
        return headers["cf-connecting-ip"]
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if headers.get("x-real-ip"):
        return headers["x-real-ip"]
    return "unknown"


def hashed_ip(request: Request) -> str:
    # Client IPs only reach the logs as a truncated sha256.
    return hashlib.sha256(client_ip(request).encode("utf-8")).hexdigest()[:16]


def _authenticate(token: str | None, lookup: UserLookup) -> dict[str, Any]:
    if not token:
        raise AuthenticationError("Authentication required")
    try:
        user = lookup(token)
    except GitHubApiError as error:
        logger.warning("Token verification failed (status=%s)", error.status)
        raise AuthenticationError("Invalid authentication token") from error
    if not user or not user.get("login"):
        raise AuthenticationError("Invalid authentication token")
    return user


# -- endpoints ------------------------------------------------------------


@app.get("/health")
def health(settings: Settings = Depends(get_settings)):
    return {
        "status": "ok",
        "github_configured": bool(
            settings.bot_token
            and settings.repo_owner
            and settings.repo_name
            and settings.storage_backend == "github"
        ),
    }


@app.get("/api/load-data")
def load_data(
    type: str | None = None,
    userId: str | None = None,
    weaponId: str | None = None,
    tracker_factory: TrackerFactory = Depends(get_tracker_factory),
):
    if type == DataType.GRID_SUBMISSION.value:
        if not weaponId:
            raise ValidationError("Missing required parameters: type, weaponId")
        weapon_id = validate_item_id(weaponId, "Weapon ID")
        items = RecordStore(tracker_factory()).load_grid_submissions(weapon_id)
        logger.info("Loaded %d submissions for weapon %s", len(items), weapon_id)
        return {"success": True, "submissions": items}

    if not type or not userId:
        raise ValidationError("Missing required parameters: type, userId")
    data_type = parse_data_type(type, allowed=USER_DATA_TYPES)
    user_id = validate_user_id(userId)
    config = config_for(data_type)

    items = RecordStore(tracker_factory()).load(data_type, user_id)
    logger.info("Loaded %d %s for user %s", len(items), config.items_name, user_id)
    return {"success": True, config.items_name: items}


@app.post("/api/save-data")
def save_data(
    request: Request,
    payload: dict[str, Any] = Depends(read_json_body),
    tracker_factory: TrackerFactory = Depends(get_tracker_factory),
):
    body = SaveDataInput.model_validate(payload)
    if not body.type or body.data is None:
        raise ValidationError("Missing required fields: type, data")
    data_type = parse_data_type(body.type)
    config = config_for(data_type)
    user_id = 0
    spirit_id: str | None = None

    if data_type == DataType.GRID_SUBMISSION:
        username = validate_username(body.username) if body.username else None
        data = validate_grid_submission(body.data)
    else:
        if not body.username or not body.user_id:
            raise ValidationError("Missing required fields: username, userId")
        username = validate_username(body.username)
        user_id = validate_user_id(body.user_id)
        data = validate_build_data(body.data, data_type)
        if data_type == DataType.MY_SPIRITS and body.spirit_id:
            spirit_id = validate_item_id(body.spirit_id, "Spirit ID")

    tracker = tracker_factory()
    if username and PermissionGate(tracker).is_banned(username):
        logger.warning("Banned user %s tried to save %s", username, data_type.value)
        raise AuthorizationError("You are banned from saving data on this wiki")

    store = RecordStore(tracker)
    logger.info(
        "save-data %s by %s from %s",
        data_type.value,
        username or "anonymous",
        hashed_ip(request),
    )
    if data_type == DataType.GRID_SUBMISSION:
        submission, submissions = store.save_grid_submission(
            data["weaponId"], username, data, replace=body.replace
        )
        return {"success": True, "submission": submission, "submissions": submissions}

    item, items = store.save(data_type, user_id, username, data, record_id=spirit_id)
    return {"success": True, config.item_name: item, config.items_name: items}


@app.post("/api/delete-data")
def delete_data(
    request: Request,
    payload: dict[str, Any] = Depends(read_json_body),
    token: str | None = Depends(bearer_token),
    tracker_factory: TrackerFactory = Depends(get_tracker_factory),
    user_lookup: UserLookup = Depends(get_user_lookup),
):
    body = DeleteDataInput.model_validate(payload)
    is_spirit = body.type == DataType.MY_SPIRITS.value
    delete_id = body.spirit_id if is_spirit else body.item_id
    if not body.type or not delete_id:
        raise ValidationError(
            f"Missing required fields: type, {'spiritId' if is_spirit else 'itemId'}"
        )
    data_type = parse_data_type(body.type, allowed=USER_DATA_TYPES)
    delete_id = validate_item_id(delete_id, "Spirit ID" if is_spirit else "Item ID")

    # Identity comes from the token, never from the request body.
    user = _authenticate(token, user_lookup)
    username, user_id = str(user["login"]), int(user["id"])
    logger.info(
        "delete-data %s %s by %s from %s",
        data_type.value,
        delete_id,
        username,
        hashed_ip(request),
    )

    remaining = RecordStore(tracker_factory()).delete(
        data_type, user_id, delete_id, owner_name=username
    )
    return {"success": True, config_for(data_type).items_name: remaining}


@app.post("/api/github-bot")
def github_bot(
    payload: dict[str, Any] = Depends(read_json_body),
    token: str | None = Depends(bearer_token),
    settings: Settings = Depends(get_settings),
    tracker_factory: TrackerFactory = Depends(get_tracker_factory),
    user_lookup: UserLookup = Depends(get_user_lookup),
):
    action = parse_bot_action(payload.get("action"))
    acting_user = None
    if action in AUTHENTICATED_ACTIONS:
        acting_user = str(_authenticate(token, user_lookup)["login"])

    bot = BotActions(tracker_factory(), bot_username=settings.bot_username)
    return bot.dispatch(action, payload, acting_user=acting_user)


@app.get("/api/admin-actions")
def admin_actions(
    action: str | None = None,
    token: str | None = Depends(bearer_token),
    tracker_factory: TrackerFactory = Depends(get_tracker_factory),
    user_lookup: UserLookup = Depends(get_user_lookup),
):
    if action == "get-admins":
        return {"admins": PermissionGate(tracker_factory()).list_entries(PermissionList.ADMINS)}
    if action == "get-banned-users":
        gate = PermissionGate(tracker_factory())
        return {"bannedUsers": gate.list_entries(PermissionList.BANNED_USERS)}
    if action == "get-admin-status":
        username = str(_authenticate(token, user_lookup)["login"])
        perms = PermissionGate(tracker_factory()).check_permissions(username)
        return {"username": username, **perms.to_dict()}
    raise ValidationError("Invalid action")


@app.get("/api/display-name")
def get_display_name(
    userId: str | None = None,
    all_names: str | None = Query(default=None, alias="all"),
    tracker_factory: TrackerFactory = Depends(get_tracker_factory),
):
    if all_names == "true":
        return {"displayNames": DisplayNameRegistry(tracker_factory()).load()}
    if userId:
        user_id = validate_user_id(userId)
        return {"displayName": DisplayNameRegistry(tracker_factory()).get(user_id)}
    raise ValidationError("Missing userId or all parameter")


@app.post("/api/display-name")
def post_display_name(
    payload: dict[str, Any] = Depends(read_json_body),
    token: str | None = Depends(bearer_token),
    tracker_factory: TrackerFactory = Depends(get_tracker_factory),
    user_lookup: UserLookup = Depends(get_user_lookup),
    moderate: Moderator = Depends(get_moderator),
):
    body = DisplayNameInput.model_validate(payload)

    if body.action == "validate":
        if not body.display_name:
            raise ValidationError("Missing required field: displayName")
        user_id = validate_user_id(body.user_id) if body.user_id else None
        registry = DisplayNameRegistry(tracker_factory(), moderate=moderate)
        error = registry.check(body.display_name, user_id)
        return {"valid": False, "error": error} if error else {"valid": True}

    if body.action == "set":
        if not body.display_name:
            raise ValidationError("Missing required field: displayName")
        # The name is always set for the token's owner.
        user = _authenticate(token, user_lookup)
        user_id = int(user["id"])
        if body.user_id and validate_user_id(body.user_id) != user_id:
            logger.warning("User %s tried to set the display name of %s", user_id, body.user_id)
            raise AuthenticationError("Unauthorized")
        registry = DisplayNameRegistry(tracker_factory(), moderate=moderate)
        entry = registry.set(user_id, str(user["login"]), body.display_name)
        return {"success": True, "displayName": entry}

    if body.action == "ban":
        if not body.user_id or not body.display_name:
            raise ValidationError("Missing required fields: userId, displayName")
        user_id = validate_user_id(body.user_id)
        acting_user = str(_authenticate(token, user_lookup)["login"])
        DisplayNameRegistry(tracker_factory()).ban(
            user_id, body.display_name, acting_user=acting_user
        )
        return {"success": True}

    raise ValidationError("Invalid action. Must be: set, validate, or ban")


@app.delete("/api/display-name")
def reset_display_name(
    userId: str | None = None,
    token: str | None = Depends(bearer_token),
    tracker_factory: TrackerFactory = Depends(get_tracker_factory),
    user_lookup: UserLookup = Depends(get_user_lookup),
):
    if not userId:
        raise ValidationError("Missing userId")
    user_id = validate_user_id(userId)
    acting_user = str(_authenticate(token, user_lookup)["login"])
    DisplayNameRegistry(tracker_factory()).reset(user_id, acting_user=acting_user)
    return {"success": True}


@app.post("/api/paypal-webhook")
def paypal_webhook(
    request: Request,
    raw: bytes = Depends(read_raw_body),
    settings: Settings = Depends(get_settings),
    tracker_factory: TrackerFactory = Depends(get_tracker_factory),
    fetch_cert: CertFetcher = Depends(get_cert_fetcher),
):
    handler = PayPalWebhookHandler(
        webhook_id=settings.paypal_webhook_id,
        tracker_factory=tracker_factory,
        badge=settings.donator_badge,
        color=settings.donator_color,
        fetch_cert=fetch_cert,
    )
    return handler.handle(request.headers, raw)


if __name__ == "__main__":
    import uvicorn

    load_dotenv()
    configure_logging()
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
