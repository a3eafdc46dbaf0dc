from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse, Response, StreamingResponse

from newsbrief.api.auth import get_app_state, require_user
from newsbrief.api.errors import NotFoundError
from newsbrief.api.schemas import BriefingUpsert, GenerateBriefingRequest
from newsbrief.generation.orchestrator import GenerateRequest
from newsbrief.observability.logger import get_logger
from newsbrief.storage.audio import RangeNotSatisfiable, parse_range
from newsbrief.storage.schema import Briefing, User
from newsbrief.usage.ledger import now_ms

log = get_logger("api")

router = APIRouter(prefix="/api")


@router.get("/health")
async def health():
    state = get_app_state()
    return {
        "status": "ok",
        "gemini": state["scripts"].has_key,
        "tts": state["speech"].has_key,
        "documentStore": state["store"].document_store_enabled,
    }


@router.post("/generate-briefing")
async def generate_briefing(body: GenerateBriefingRequest, user: User = Depends(require_user)):
    state = get_app_state()
    result = await state["orchestrator"].run(
        user,
        GenerateRequest(topics=body.topics, voice=body.voice, duration=body.duration),
    )
    return JSONResponse(status_code=result.status_code, content=result.body, headers=result.headers)


@router.post("/briefings")
async def save_briefing(body: BriefingUpsert, user: User = Depends(require_user)):
    state = get_app_state()
    briefing_id = body.id or f"briefing-{now_ms()}"
    state["briefings"].upsert(Briefing(
        id=briefing_id,
        user_id=user.id,
        topics=body.topics,
        voice=body.voice or "female",
        duration=body.duration or 900,
        script=body.script,
        audio_url=body.audio_url or None,
        is_demo=body.is_demo,
        date=body.date,
        created_at=body.created_at or now_ms(),
    ))
    return {"ok": True, "id": briefing_id}


@router.get("/briefings")
async def list_briefings(user: User = Depends(require_user)):
    repo = get_app_state()["briefings"]
    return {"briefings": [await repo.to_api(b) for b in repo.list_for_user(user.id)]}


@router.get("/briefings/{briefing_id}")
async def get_briefing(briefing_id: str, user: User = Depends(require_user)):
    repo = get_app_state()["briefings"]
    briefing = repo.get(user.id, briefing_id)
    if briefing is None:
        raise NotFoundError("Not found")
    return {"briefing": await repo.to_api(briefing)}


@router.delete("/briefings/{briefing_id}")
async def delete_briefing(briefing_id: str, user: User = Depends(require_user)):
    if not await get_app_state()["briefings"].delete(user.id, briefing_id):
        raise NotFoundError("Not found")
    return {"ok": True}


@router.get("/audio/{filename}")
async def get_audio(filename: str, range_header: str | None = Header(default=None, alias="range")):
    audio = get_app_state()["audio"]
    size = audio.size(filename)
    if size is None:
        raise NotFoundError("Not found")

    headers = {"Accept-Ranges": "bytes"}
    try:
        byte_range = parse_range(range_header, size)
    except RangeNotSatisfiable:
        return Response(status_code=416, headers={**headers, "Content-Range": f"bytes */{size}"})

    if byte_range is None:
        start, end, status = 0, size - 1, 200
    else:
        (start, end), status = byte_range, 206
        headers["Content-Range"] = f"bytes {start}-{end}/{size}"
    headers["Content-Length"] = str(end - start + 1)
    return StreamingResponse(
        audio.stream_range(filename, start, end),
        status_code=status,
        media_type="audio/mpeg",
        headers=headers,
    )
