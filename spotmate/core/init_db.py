from loguru import logger
from spotmate.core.db import engine, Base

# Import all models so SQLAlchemy registers them
from spotmate.models.profile import Profile  # noqa: F401
from spotmate.models.presence import Presence  # noqa: F401
from spotmate.models.activity import LocationVisit, ActivityPattern, PlaceCache, LocationSession  # noqa: F401
from spotmate.models.compatibility import CompatibilityWeights  # noqa: F401
from spotmate.models.feedback import MeetupFeedback  # noqa: F401
from spotmate.modules.connections.models import ConnectionRequest, Match  # noqa: F401


def init_db():
    logger.info("Creating database tables")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")
