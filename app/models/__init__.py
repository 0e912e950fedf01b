# Geofence tracking — Database Models
# Import all models here for SQLAlchemy discovery

from app.models.tracker import Tracker                 # noqa
from app.models.tracker_state import TrackerState      # noqa
from app.models.zone import Zone                       # noqa
from app.models.visit import Visit                     # noqa
from app.models.geofence_event import GeofenceEvent, EventType, DeliveryStatus   # noqa
from app.models.system_config import SystemConfig      # noqa
