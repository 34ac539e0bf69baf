# app.py: SheetPrep API
# - Catalog authoring (admin): sheets, topics, sub-patterns, problems
# - Progress toggles with daily streaks
# - Dashboard aggregates, notes, user oversight

import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import db
from engines import activity, aggregation, hierarchy, profiles, progress, reordering
from engines.validation import (
    CatalogError,
    HasActiveChildren,
    MalformedBatchInput,
    NotFound,
    PermissionDenied,
)
from env_validation import get_env_int, get_streak_timezone
from schemas import Direction, Note, Platform

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        from env_validation import validate_environment
        validate_environment()

        db.init()
        logger.info("SheetPrep ready | DB_PATH: %s", db.DB_PATH)
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="SheetPrep API", version="1.0.0", lifespan=_lifespan)


@app.exception_handler(sqlite3.Error)
async def storage_error_handler(request: Request, exc: sqlite3.Error):
    logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "storage error"})


def _http_error(exc: CatalogError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, HasActiveChildren):
        return HTTPException(
            status_code=409,
            detail={"error": "has_active_children", "count": exc.count, "message": str(exc)},
        )
    if isinstance(exc, MalformedBatchInput):
        return HTTPException(status_code=400, detail=f"Malformed batch: {exc}")
    if isinstance(exc, PermissionDenied):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json")


# ---------- Bodies ----------
class SessionBody(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    email: Optional[str] = None
    display_name: Optional[str] = None


class HeartbeatBody(BaseModel):
    user_id: str


class DisplayNameBody(BaseModel):
    user_id: str
    display_name: str = Field(min_length=1, max_length=120)


class SheetBody(BaseModel):
    actor_id: str
    title: str = Field(min_length=1)
    description: str = ""


class ChildBody(BaseModel):
    actor_id: str
    title: str = Field(min_length=1)
    url: str = ""
    platform: Platform = "Other"
    platform_id: str = ""


class RenameBody(BaseModel):
    actor_id: str
    title: str = Field(min_length=1)
    description: Optional[str] = None


class ActorBody(BaseModel):
    actor_id: str


class MoveBody(BaseModel):
    actor_id: str
    direction: Direction


class ImportBody(BaseModel):
    actor_id: str
    # Raw JSON text as pasted by the author, or an already decoded array.
    payload: Any


class ProgressBody(BaseModel):
    user_id: str
    problem_id: str


class ToggleBody(ProgressBody):
    solved: bool


class NoteBody(BaseModel):
    user_id: str
    problem_id: str
    content: str = Field(default="", max_length=20000)


@app.get("/")
def root():
    return {"app": "SheetPrep API", "status": "ok"}


# ---------- Session / Profile ----------
@app.post("/session")
def session_sign_in(body: SessionBody):
    profile = profiles.sign_in(body.user_id, email=body.email, display_name=body.display_name)
    return _dump(profile)


@app.post("/session/heartbeat")
def session_heartbeat(body: HeartbeatBody):
    try:
        profiles.heartbeat(body.user_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return {"ok": True}


@app.get("/profile")
def profile(user_id: str, days: int = 365):
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id required")
    try:
        current = profiles.get_profile(user_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc

    tz = get_streak_timezone()
    today = progress.calendar_day(datetime.now(timezone.utc), tz)
    target = get_env_int("DAILY_TARGET", 3)
    solved_today = activity.solved_on(current.completed_problems, today, tz)
    window = activity.activity_window(current.completed_problems, today, days=max(1, min(days, 366)), tz=tz)
    return {
        "profile": _dump(current),
        "total_solved": current.total_solved,
        "solved_today": solved_today,
        "daily_target": target,
        "daily_progress": activity.daily_mission_progress(solved_today, target),
        "activity": [{"date": entry.date.isoformat(), "count": entry.count} for entry in window],
    }


@app.patch("/profile/display-name")
def profile_display_name(body: DisplayNameBody):
    try:
        return _dump(profiles.update_display_name(body.user_id, body.display_name))
    except CatalogError as exc:
        raise _http_error(exc) from exc


# ---------- Catalog (read) ----------
@app.get("/sheets")
def list_sheets():
    return [_dump(sheet) for sheet in hierarchy.list_sheets()]


@app.get("/sheets/stats")
def sheet_stats(user_id: str):
    try:
        return [_dump(entry) for entry in aggregation.get_sheet_stats(user_id)]
    except CatalogError as exc:
        raise _http_error(exc) from exc


@app.get("/sheets/{sheet_id}/structure")
def sheet_structure(sheet_id: str):
    try:
        return [_dump(topic) for topic in hierarchy.get_full_structure(sheet_id)]
    except CatalogError as exc:
        raise _http_error(exc) from exc


@app.get("/sheets/{sheet_id}/progress")
def sheet_progress(sheet_id: str, user_id: str, include_notes: bool = False):
    try:
        summary = aggregation.get_sheet_progress(sheet_id, user_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    result = _dump(summary)
    if include_notes:
        problem_ids = [
            problem.id
            for topic in summary.topics
            for sub in topic.sub_patterns
            for problem in sub.problems
        ]
        result["notes"] = db.get_notes(user_id, problem_ids)
    return result


@app.get("/items/{item_id}/children")
def list_children(item_id: str):
    try:
        kind, children = hierarchy.list_children(item_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return {"kind": kind, "items": [_dump(child) for child in children]}


@app.get("/topics/{topic_id}/random-unsolved")
def random_unsolved(topic_id: str, user_id: str):
    try:
        kind, topic = hierarchy.locate(topic_id)
        if kind != "topic" or topic.is_deleted:
            raise NotFound("topic", topic_id)
        current = profiles.get_profile(user_id)
        node = next(
            (entry for entry in hierarchy.get_full_structure(topic.sheet_id) if entry.id == topic_id),
            None,
        )
        if node is None:
            raise NotFound("topic", topic_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    pick = activity.pick_random_unsolved(node, set(current.completed_problems))
    return {"problem": _dump(pick) if pick else None, "all_solved": pick is None}


# ---------- Catalog (admin) ----------
@app.post("/admin/sheets")
def admin_create_sheet(body: SheetBody):
    try:
        profiles.require_admin(body.actor_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return _dump(hierarchy.create_sheet(body.title, body.description))


@app.post("/admin/items/{parent_id}/children")
def admin_create_child(parent_id: str, body: ChildBody):
    try:
        profiles.require_admin(body.actor_id)
        created = hierarchy.create_child(
            parent_id,
            body.title,
            url=body.url,
            platform=body.platform,
            platform_id=body.platform_id,
        )
    except CatalogError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _dump(created)


@app.patch("/admin/items/{item_id}")
def admin_rename(item_id: str, body: RenameBody):
    try:
        profiles.require_admin(body.actor_id)
        return _dump(hierarchy.rename(item_id, body.title, body.description))
    except CatalogError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.delete("/admin/items/{item_id}")
def admin_soft_delete(item_id: str, actor_id: str):
    try:
        profiles.require_admin(actor_id)
        deleted = hierarchy.soft_delete(item_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "item": _dump(deleted)}


@app.post("/admin/items/{item_id}/restore")
def admin_restore(item_id: str, body: ActorBody):
    try:
        profiles.require_admin(body.actor_id)
        restored = hierarchy.restore(item_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "item": _dump(restored)}


@app.post("/admin/items/{item_id}/move")
def admin_move(item_id: str, body: MoveBody):
    try:
        profiles.require_admin(body.actor_id)
        result = reordering.move_in_store(item_id, body.direction)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _dump(result)


@app.post("/admin/items/{subpattern_id}/import")
def admin_import(subpattern_id: str, body: ImportBody):
    try:
        profiles.require_admin(body.actor_id)
        created = hierarchy.import_problems(subpattern_id, body.payload)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return {"added": len(created), "items": [_dump(problem) for problem in created]}


@app.get("/admin/recycle-bin")
def admin_recycle_bin(actor_id: str, kind: Literal["sheet", "topic", "subpattern", "problem"] = "problem"):
    try:
        profiles.require_admin(actor_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return {"kind": kind, "items": [_dump(item) for item in hierarchy.list_deleted(kind)]}


@app.get("/admin/users")
def admin_users(actor_id: str):
    try:
        profiles.require_admin(actor_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    rows: List[dict] = []
    for entry in profiles.list_profiles():
        rows.append(
            {
                "uid": entry.uid,
                "email": entry.email,
                "display_name": entry.display_name,
                "role": entry.role,
                "solved": entry.total_solved,
                "current_streak": entry.current_streak,
                "max_streak": entry.max_streak,
                "last_active": entry.last_active.isoformat(),
            }
        )
    return {"users": rows}


# ---------- Progress ----------
@app.post("/progress/solve")
def progress_solve(body: ProgressBody):
    try:
        return _dump(progress.solve(body.user_id, body.problem_id))
    except CatalogError as exc:
        raise _http_error(exc) from exc


@app.post("/progress/unsolve")
def progress_unsolve(body: ProgressBody):
    try:
        return _dump(progress.unsolve(body.user_id, body.problem_id))
    except CatalogError as exc:
        raise _http_error(exc) from exc


@app.post("/progress/toggle")
def progress_toggle(body: ToggleBody):
    try:
        return _dump(progress.toggle(body.user_id, body.problem_id, body.solved))
    except CatalogError as exc:
        raise _http_error(exc) from exc


# ---------- Notes ----------
@app.put("/notes")
def put_note(body: NoteBody):
    db.save_note(body.user_id, body.problem_id, body.content)
    return _dump(Note.model_validate(dict(db.get_note(body.user_id, body.problem_id))))


@app.get("/notes")
def get_notes(user_id: str, problem_id: Optional[str] = None):
    if problem_id:
        row = db.get_note(user_id, problem_id)
        if row is None:
            raise HTTPException(status_code=404, detail="note not found")
        return _dump(Note.model_validate(dict(row)))
    return {"user_id": user_id, "notes": db.get_notes(user_id)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
