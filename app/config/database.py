"""
Database configuration and connection management for MongoDB
"""
from motor.motor_asyncio import AsyncIOMotorClient
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()

class DatabaseConfig:
    """MongoDB database configuration"""

    def __init__(self):
        self.MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/?replicaSet=rs0")
        self.DATABASE_NAME = os.getenv("DATABASE_NAME", "baithaka_ghar")
        self.client: Optional[AsyncIOMotorClient] = None
        self.database = None

    async def connect_db(self):
        """Connect to MongoDB"""
        try:
            self.client = AsyncIOMotorClient(self.MONGO_URI)
            self.database = self.client[self.DATABASE_NAME]
            # Test connection
            await self.client.admin.command('ping')
            await self.ensure_indexes()
            print(f"✅ Connected to MongoDB: {self.DATABASE_NAME}")
        except Exception as e:
            print(f"❌ Error connecting to MongoDB: {e}")
            raise

    async def ensure_indexes(self):
        """Indexes the services rely on for uniqueness"""
        usages = self.get_collection(Collections.PROMOTION_USAGES)
        await usages.create_index([("promotion_id", 1), ("booking_id", 1)], unique=True)

    async def close_db(self):
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            print("✅ MongoDB connection closed")

    def get_collection(self, collection_name: str):
        """Get a specific collection"""
        if self.database is None:
            raise Exception("Database not connected")
        return self.database[collection_name]

    async def start_session(self):
        """Start a client session. Transactions need a replica set."""
        if self.client is None:
            raise Exception("Database not connected")
        return await self.client.start_session()

# Global database instance
db_config = DatabaseConfig()

# Collection names
class Collections:
    ADMINS = "admins"
    PROPERTIES = "properties"
    BOOKINGS = "bookings"

    # Pricing & promotions
    PROPERTY_PRICING = "property_pricing"
    PROMOTIONS = "promotions"
    PROMOTION_USAGES = "promotion_usages"
