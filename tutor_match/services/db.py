import motor.motor_asyncio
from pymongo import ASCENDING, DESCENDING
import os
from dotenv import load_dotenv

from tutor_match.utils.logging_config import get_logger

logger = get_logger(__name__)

load_dotenv()

MONGO_DETAILS = os.getenv("MONGO_DETAILS", "mongodb://localhost:27017")

DB_NAME = os.getenv("DB_NAME", "tutor_match")

logger.info(f"Initializing MongoDB connection to database: {DB_NAME}")

# Motor connects lazily; nothing is dialed until the first operation
client = motor.motor_asyncio.AsyncIOMotorClient(MONGO_DETAILS)
db = client[DB_NAME]

# Collections
seeker_listings_coll = db["seeker_listings"]
provider_listings_coll = db["provider_listings"]
provider_profiles_coll = db["provider_profiles"]
subjects_coll = db["subjects"]


async def _create_index(coll, keys, **kwargs):
    try:
        await coll.create_index(keys, **kwargs)
        logger.debug(f"Created index on {coll.name}: {keys}")
    except Exception as e:
        if "already exists" in str(e).lower():
            logger.debug(f"Index on {coll.name} {keys} already exists")
        else:
            logger.warning(f"Could not create index on {coll.name} {keys}: {e}")


async def init_indexes():
    """Index initialization for collections."""
    logger.info("Starting database index initialization")

    await _create_index(seeker_listings_coll, [("listing_id", ASCENDING)], unique=True)
    await _create_index(provider_listings_coll, [("listing_id", ASCENDING)], unique=True)
    await _create_index(provider_profiles_coll, [("profile_id", ASCENDING)], unique=True)
    await _create_index(provider_profiles_coll, [("owner_id", ASCENDING)], unique=True)
    await _create_index(subjects_coll, [("subject_id", ASCENDING)], unique=True)

    # Candidate retrieval: status first, then the filterable attributes
    await _create_index(provider_listings_coll, [
        ("status", ASCENDING), ("subject_ids", ASCENDING), ("levels", ASCENDING),
    ])
    await _create_index(provider_listings_coll, [("price_per_session", ASCENDING)])
    await _create_index(provider_listings_coll, [("rating_average", DESCENDING), ("view_count", DESCENDING)])
    await _create_index(provider_listings_coll, [("owner_id", ASCENDING), ("status", ASCENDING)])
    await _create_index(seeker_listings_coll, [
        ("status", ASCENDING), ("subject_ids", ASCENDING), ("levels", ASCENDING),
    ])
    await _create_index(seeker_listings_coll, [("view_count", DESCENDING), ("created_at", DESCENDING)])

    logger.info("Database index initialization completed")
