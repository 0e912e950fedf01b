from pydantic import BaseModel
from typing import Optional


class ProcessingResultOut(BaseModel):
    """What the protocol adapter gets back for every ping. Never a 4xx/5xx."""
    processed: bool
    skipped: Optional[bool] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    events: Optional[list[dict]] = None
