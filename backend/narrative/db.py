# narrative/db.py

import certifi
from motor.motor_asyncio import AsyncIOMotorClient

from narrative.config import require_mongo_config


def create_client(mongo_uri: str) -> AsyncIOMotorClient:
    # certifi provides Mozilla's CA bundle for SSL verification
    return AsyncIOMotorClient(
        mongo_uri,
        tlsCAFile=certifi.where(),
        serverSelectionTimeoutMS=10000,
        connectTimeoutMS=20000,
    )


def get_database():
    """Open a client from the environment settings and return (client, db)"""
    mongo_uri, db_name = require_mongo_config()
    client = create_client(mongo_uri)
    return client, client[db_name]
