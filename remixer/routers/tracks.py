import json
import logging
import os

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse

from remixer import delivery, intake, lifecycle, path_guard, store
from remixer.deps import get_owner, get_registry, parse_track_id
from remixer.errors import JobInProgressError, NotFoundError, PathRejectedError
from remixer.jobs import JobRegistry, ProcessingJob
from remixer.models import Owner, Track

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api")


def _owned_track(track_id: str, owner: Owner) -> Track:
    track = store.get_track(parse_track_id(track_id))
    if track is None or track.owner_id != owner.id:
        raise NotFoundError("Track not found")
    return track


async def _json_body(request: Request):
    """Decoded JSON body, or None when it is missing or malformed."""
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


@router.post("/tracks/upload", status_code=201)
async def upload_track(
    audio: UploadFile = File(None),
    owner: Owner = Depends(get_owner),
    registry: JobRegistry = Depends(get_registry),
):
    track = await intake.accept_upload(owner, audio, registry)
    return track.to_dict()


@router.get("/tracks")
def list_tracks(owner: Owner = Depends(get_owner)):
    return [t.to_dict() for t in store.list_tracks(owner)]


@router.delete("/tracks")
def clear_tracks(owner: Owner = Depends(get_owner)):
    """Delete every track the owner has, and its files."""
    tracks = store.list_tracks(owner)

    for track in tracks:
        for path in [track.original_path, *track.extended_paths]:
            try:
                safe = path_guard.validate(path)
            except PathRejectedError as e:
                logger.warning(f"Not deleting unsafe stored path for track {track.id}: {e.reason}")
                continue
            try:
                os.unlink(safe)
                logger.info(f"Deleted file: {safe}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not delete {safe}: {e}")

        try:
            os.rmdir(lifecycle.track_result_dir(track.id))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove result directory for track {track.id}: {e}")

    deleted = store.delete_all_tracks(owner)
    logger.info(f"Cleared {deleted} track(s) for {owner.username}")
    return {"message": "All tracks cleared", "deleted": deleted}


@router.get("/tracks/{track_id}")
def get_track(track_id: str, owner: Owner = Depends(get_owner)):
    return _owned_track(track_id, owner).to_dict()


@router.get("/tracks/{track_id}/status")
def get_track_status(track_id: str, owner: Owner = Depends(get_owner)):
    return {"status": _owned_track(track_id, owner).status}


@router.post("/tracks/{track_id}/process", status_code=202)
async def process_track(
    track_id: str,
    request: Request,
    owner: Owner = Depends(get_owner),
    registry: JobRegistry = Depends(get_registry),
):
    """Start rendering a new extended version. Returns before the job finishes."""
    tid = parse_track_id(track_id)
    payload = await _json_body(request)

    async with registry.lock(tid):
        track = _owned_track(track_id, owner)
        if registry.is_running(tid) or lifecycle.is_in_flight(track.status):
            raise JobInProgressError("Track is already being processed")

        plan = lifecycle.plan_processing(track, payload)
        source_path = path_guard.validate(track.original_path)
        settings = plan.settings.model_dump(by_alias=True)
        job_id = store.begin_attempt(tid, plan.status, settings, str(plan.output_path))
        if job_id is None:
            # state moved underneath us; re-read for an accurate answer
            lifecycle.check_version_limit(store.get_track(tid) or track)
            raise JobInProgressError("Track is already being processed")

        job = ProcessingJob(
            track_id=tid,
            job_id=job_id,
            source_path=str(source_path),
            output_path=str(plan.output_path),
            settings=plan.settings,
        )
        registry.dispatch(tid, job.run())

    logger.info(f"Dispatched job {job_id} (attempt {plan.attempt}) for track {tid}")
    return JSONResponse(
        {
            "message": "Processing started",
            "track_id": tid,
            "status": plan.status,
            "version": plan.attempt,
        },
        status_code=202,
    )


@router.get("/tracks/{track_id}/download")
def download_track(track_id: str, version: str | None = None, owner: Owner = Depends(get_owner)):
    track = _owned_track(track_id, owner)
    return delivery.download_file(track, version)
