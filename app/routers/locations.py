"""
Location ping webhook — the protocol adapter posts one ping per request.
POST /locations — canonical or OwnTracks payload, always HTTP 200.
"""

from fastapi import APIRouter, Request
from app.schemas.location import ProcessingResultOut
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/locations", response_model=ProcessingResultOut, response_model_exclude_none=True,
             summary="Submit one location ping")
async def receive_location(request: Request):
    """
    Single entry point for device pings.
    Always returns HTTP 200 — OwnTracks retries on non-200 and queues pings on the phone.
    """
    try:
        payload = await request.json()
    except ValueError:
        return {"processed": False, "error": "body is not JSON"}
    if not isinstance(payload, dict):
        return {"processed": False, "error": "body must be a JSON object"}

    # OwnTracks also posts transition/waypoint/lwt messages to the same URL
    message_type = payload.get("_type")
    if message_type and message_type != "location":
        logger.debug(f"Ignoring OwnTracks message _type={message_type}")
        return {"processed": False, "skipped": True, "reason": "ignored_message_type",
                "message": f"{message_type} messages are not processed"}

    processor = request.app.state.location_processor
    result = await processor.process_payload(payload)
    return result.as_dict()
