import logging
from pathlib import Path
from urllib.parse import quote_plus, urlencode

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from .assets import local_asset_path, resolve_image
from .auth import (
    Identity,
    authenticate,
    create_session,
    create_user,
    delete_session,
    ensure_admin_user,
    get_user_by_email,
    get_user_by_session,
    identity_for,
)
from .catalog import sync_catalog
from .config import ensure_config, load_catalog, load_viewer_settings
from .db import init_db
from .favorites import FavoriteSyncError
from .modes import all_policies, resolve
from .session import SessionRegistry, ViewerSession
from .store import ContentStore, ContentStoreError

APP_ROOT = Path(__file__).resolve().parent
TEMPLATES = Jinja2Templates(directory=str(APP_ROOT / "templates"))
SESSION_COOKIE = "session"

_version_path = APP_ROOT.parent / "VERSION"
if _version_path.exists():
    APP_VERSION = _version_path.read_text(encoding="utf-8").strip() or "dev"
else:
    APP_VERSION = "dev"

app = FastAPI(title="StallView")
logger = logging.getLogger(__name__)

app.mount("/static", StaticFiles(directory=str(APP_ROOT / "static")), name="static")


class OpenViewerRequest(BaseModel):
    comic_id: str
    mode: str | None = None


class ModeRequest(BaseModel):
    mode: str | None = None


class ComicRequest(BaseModel):
    comic_id: str


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.on_event("startup")
def _startup():
    ensure_config()
    init_db()
    ensure_admin_user()
    settings = load_viewer_settings()
    app.state.settings = settings
    app.state.store = ContentStore()
    app.state.sessions = SessionRegistry(settings.session_idle_s)
    app.state.sessions.start_pruning(settings.session_prune_s)
    _sync_catalog()


@app.on_event("shutdown")
def _shutdown():
    sessions = getattr(app.state, "sessions", None)
    if sessions is not None:
        sessions.stop_pruning()
        sessions.close_all()


def _sync_catalog() -> tuple[bool, str | None]:
    try:
        kept = sync_catalog(load_catalog())
    except Exception as exc:
        logger.exception("Catalog sync failed")
        return (False, str(exc))
    logger.info("Catalog synced: %s comics", kept)
    return (True, None)


def current_identity(request: Request) -> Identity | None:
    token = request.cookies.get(SESSION_COOKIE)
    return identity_for(get_user_by_session(token)) if token else None


def _render(request: Request, template_name: str, context: dict, status_code: int = 200):
    context = dict(context)
    identity = context.get("current_user")
    context["is_admin"] = bool(identity and identity.is_admin)
    context["active_path"] = request.url.path
    context["modes"] = all_policies()
    context["app_version"] = APP_VERSION
    return TEMPLATES.TemplateResponse(request, template_name, context, status_code=status_code)


def _card(comic, favorite: bool) -> dict:
    return {"comic": comic, "image_url": resolve_image(comic.image_url), "favorite": favorite}


def _return_to(request: Request) -> str:
    params = [(k, v) for k, v in request.query_params.multi_items() if k not in {"error", "success"}]
    if not params:
        return request.url.path
    return f"{request.url.path}?{urlencode(params)}"


def _local_url(url: str | None, fallback: str = "/browse") -> str:
    if not url or not url.startswith("/") or url.startswith("//"):
        return fallback
    return url


def _with_message(url: str, key: str, message: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{key}={quote_plus(message)}"


@app.get("/login", response_class=HTMLResponse)
def login_page(
    request: Request,
    error: str | None = None,
    success: str | None = None,
    identity: Identity | None = Depends(current_identity),
):
    if identity:
        return RedirectResponse(url="/browse", status_code=303)
    return _render(
        request,
        "login.html",
        {"current_user": None, "error": error, "success": success},
    )


def _signed_in_redirect(user_id: int, url: str = "/browse") -> RedirectResponse:
    token = create_session(user_id)
    response = RedirectResponse(url=url, status_code=303)
    response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax")
    return response


@app.post("/login")
def login(email: str = Form(...), password: str = Form(...)):
    user = authenticate(email.strip(), password)
    if not user:
        return RedirectResponse(url="/login?error=Invalid+credentials", status_code=303)
    return _signed_in_redirect(user.id)


@app.post("/signup")
def signup(
    email: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
):
    email = email.strip()
    if not email or "@" not in email:
        return RedirectResponse(url="/login?error=Valid+email+required", status_code=303)
    if not password:
        return RedirectResponse(url="/login?error=Password+required", status_code=303)
    if password != confirm_password:
        return RedirectResponse(url="/login?error=Password+confirmation+does+not+match", status_code=303)
    if get_user_by_email(email):
        return RedirectResponse(url="/login?error=Email+already+registered", status_code=303)
    user = create_user(email, password)
    return _signed_in_redirect(user.id)


@app.post("/logout")
def logout(request: Request):
    delete_session(request.cookies.get(SESSION_COOKIE))
    response = RedirectResponse(url="/login?success=Signed+out", status_code=303)
    response.delete_cookie(SESSION_COOKIE)
    return response


@app.get("/")
def index():
    return RedirectResponse(url="/browse", status_code=303)


@app.get("/browse", response_class=HTMLResponse)
async def browse(
    request: Request,
    mode: str | None = None,
    q: str | None = None,
    error: str | None = None,
    identity: Identity | None = Depends(current_identity),
):
    policy = resolve(mode)
    retry_url = None
    favorite_ids: set[str] = set()
    try:
        comics = await app.state.store.list_comics(q)
        if identity:
            favorite_ids = await app.state.store.favorite_ids(identity.id)
    except ContentStoreError as exc:
        error = str(exc)
        retry_url = str(request.url)
        comics = []
    cards = [_card(c, c.id in favorite_ids) for c in comics]
    return _render(
        request,
        "browse.html",
        {
            "current_user": identity,
            "policy": policy,
            "cards": cards,
            "q": q or "",
            "error": error,
            "retry_url": retry_url,
            "return_to": _return_to(request),
        },
    )


@app.get("/comic/{comic_id}", response_class=HTMLResponse)
async def comic_page(
    request: Request,
    comic_id: str,
    mode: str | None = None,
    identity: Identity | None = Depends(current_identity),
):
    settings = app.state.settings
    try:
        comic = await app.state.store.get_comic(comic_id)
    except ContentStoreError as exc:
        return _render(
            request,
            "comic.html",
            {
                "current_user": identity,
                "error": f"Failed to load comic: {exc}",
                "retry_url": str(request.url),
                "state": None,
                "session_id": None,
            },
            status_code=503,
        )
    if comic is None:
        raise HTTPException(status_code=404, detail="Comic not found")

    session = await ViewerSession.open(
        comic, mode or settings.default_mode, identity, app.state.store, settings
    )
    session_id = app.state.sessions.add(session)
    return _render(
        request,
        "comic.html",
        {
            "current_user": identity,
            "error": None,
            "state": session.snapshot(),
            "session_id": session_id,
            "poll_ms": min(500, settings.autoplay_interval_ms),
        },
    )


@app.get("/profile", response_class=HTMLResponse)
async def profile_page(
    request: Request,
    error: str | None = None,
    identity: Identity | None = Depends(current_identity),
):
    retry_url = None
    favorites = []
    if identity:
        try:
            favorites = await app.state.store.list_favorites(identity.id)
        except ContentStoreError as exc:
            error = str(exc)
            retry_url = "/profile"
    cards = [_card(c, True) for c in favorites]
    return _render(
        request,
        "profile.html",
        {
            "current_user": identity,
            "cards": cards,
            "error": error,
            "retry_url": retry_url,
            "return_to": "/profile",
        },
    )


@app.post("/favorites/{comic_id}")
async def card_favorite(
    comic_id: str,
    action: str = Form(...),
    next: str = Form("/browse"),
    identity: Identity | None = Depends(current_identity),
):
    target = _local_url(next)
    if identity is None:
        return RedirectResponse(url="/login?error=Sign+in+to+keep+favorites", status_code=303)
    if action not in {"add", "remove"}:
        raise HTTPException(status_code=400, detail="Unknown favorite action")
    store = app.state.store
    try:
        if action == "add":
            if await store.get_comic(comic_id) is None:
                raise HTTPException(status_code=404, detail="Comic not found")
            await store.add_favorite(identity.id, comic_id)
        else:
            await store.remove_favorite(identity.id, comic_id)
    except ContentStoreError as exc:
        return RedirectResponse(url=_with_message(target, "error", str(exc)), status_code=303)
    return RedirectResponse(url=target, status_code=303)


@app.get("/asset/{reference:path}")
def asset(reference: str):
    file_path = local_asset_path(reference)
    if file_path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(str(file_path))


async def _viewer(session_id: str, identity: Identity | None) -> ViewerSession:
    session = app.state.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Viewer session not found")
    if session.identity != identity:
        await session.change_identity(identity)
    return session


def _state(session_id: str, session: ViewerSession) -> dict:
    return {"session_id": session_id, **session.snapshot()}


async def _fetch_comic(comic_id: str):
    try:
        comic = await app.state.store.get_comic(comic_id)
    except ContentStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if comic is None:
        raise HTTPException(status_code=404, detail="Comic not found")
    return comic


@app.post("/api/viewer")
async def open_viewer(
    body: OpenViewerRequest,
    identity: Identity | None = Depends(current_identity),
):
    settings = app.state.settings
    comic = await _fetch_comic(body.comic_id)
    session = await ViewerSession.open(
        comic, body.mode or settings.default_mode, identity, app.state.store, settings
    )
    session_id = app.state.sessions.add(session)
    return _state(session_id, session)


@app.get("/api/viewer/{session_id}")
async def viewer_state(session_id: str, identity: Identity | None = Depends(current_identity)):
    session = await _viewer(session_id, identity)
    return _state(session_id, session)


@app.post("/api/viewer/{session_id}/next")
async def viewer_next(session_id: str, identity: Identity | None = Depends(current_identity)):
    session = await _viewer(session_id, identity)
    session.next()
    return _state(session_id, session)


@app.post("/api/viewer/{session_id}/previous")
async def viewer_previous(session_id: str, identity: Identity | None = Depends(current_identity)):
    session = await _viewer(session_id, identity)
    session.previous()
    return _state(session_id, session)


@app.post("/api/viewer/{session_id}/play")
async def viewer_play(session_id: str, identity: Identity | None = Depends(current_identity)):
    session = await _viewer(session_id, identity)
    session.play()
    return _state(session_id, session)


@app.post("/api/viewer/{session_id}/pause")
async def viewer_pause(session_id: str, identity: Identity | None = Depends(current_identity)):
    session = await _viewer(session_id, identity)
    session.pause()
    return _state(session_id, session)


@app.post("/api/viewer/{session_id}/mode")
async def viewer_mode(
    session_id: str,
    body: ModeRequest,
    identity: Identity | None = Depends(current_identity),
):
    session = await _viewer(session_id, identity)
    session.change_mode(body.mode)
    return _state(session_id, session)


@app.post("/api/viewer/{session_id}/comic")
async def viewer_comic(
    session_id: str,
    body: ComicRequest,
    identity: Identity | None = Depends(current_identity),
):
    session = await _viewer(session_id, identity)
    comic = await _fetch_comic(body.comic_id)
    await session.change_comic(comic)
    return _state(session_id, session)


@app.post("/api/viewer/{session_id}/favorite")
async def viewer_favorite(session_id: str, identity: Identity | None = Depends(current_identity)):
    session = await _viewer(session_id, identity)
    try:
        await session.toggle_favorite()
    except FavoriteSyncError as exc:
        return JSONResponse(
            status_code=503,
            content={"error": str(exc), "retry": True, **_state(session_id, session)},
        )
    return _state(session_id, session)


@app.post("/api/viewer/{session_id}/favorite/retry")
async def viewer_favorite_retry(session_id: str, identity: Identity | None = Depends(current_identity)):
    session = await _viewer(session_id, identity)
    await session.retry_favorite()
    return _state(session_id, session)


@app.delete("/api/viewer/{session_id}")
async def close_viewer(session_id: str):
    if not app.state.sessions.close(session_id):
        raise HTTPException(status_code=404, detail="Viewer session not found")
    return {"session_id": session_id, "closed": True}
