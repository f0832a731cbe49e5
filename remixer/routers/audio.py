from fastapi import APIRouter, Depends, Header

from remixer import delivery, store
from remixer.deps import get_owner, parse_track_id
from remixer.errors import NotFoundError, ValidationError
from remixer.models import Owner

router = APIRouter(prefix="/api")


@router.get("/audio/{track_id}/{audio_type}")
def stream_audio(
    track_id: str,
    audio_type: str,
    version: str | None = None,
    range_header: str | None = Header(None, alias="Range"),
    owner: Owner = Depends(get_owner),
):
    """Stream the original or an extended version, honouring byte ranges."""
    tid = parse_track_id(track_id)
    if audio_type not in delivery.AUDIO_TYPES:
        raise ValidationError("Invalid audio type")

    track = store.get_track(tid)
    if track is None or track.owner_id != owner.id:
        raise NotFoundError("Track not found")

    path = delivery.resolve_version(track, audio_type, version)
    return delivery.stream_file(path, range_header)
