"""
Seed script to create the first admin user and a demo property
"""
import asyncio
from motor.motor_asyncio import AsyncIOMotorClient
from app.utils.auth import hash_password
from datetime import datetime
import os
from dotenv import load_dotenv

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/?replicaSet=rs0")
DATABASE_NAME = os.getenv("DATABASE_NAME", "baithaka_ghar")

async def seed_first_admin():
    """Create the first admin user"""
    client = AsyncIOMotorClient(MONGO_URI)
    db = client[DATABASE_NAME]
    admins_collection = db["admins"]
    properties_collection = db["properties"]

    print("🌱 Seeding first admin user...")

    existing_admin = await admins_collection.find_one({"username": "admin"})
    if existing_admin:
        print("⚠️  Admin user already exists. Skipping...")
    else:
        admin_doc = {
            "username": "admin",
            "email": "admin@baithakaghar.com",
            "full_name": "System Administrator",
            "role": "super_admin",
            "is_active": True,
            "password": hash_password("admin123"),  # Default password
            "created_at": datetime.utcnow(),
            "updated_at": datetime.utcnow()
        }
        await admins_collection.insert_one(admin_doc)
        print(f"✅ Created admin user: {admin_doc['username']}")
        print(f"   Password: admin123")
        print("⚠️  IMPORTANT: Change the default password after first login!")

    if not await properties_collection.find_one({"title": "Demo Homestay"}):
        property_doc = {
            "title": "Demo Homestay",
            "city": "Darjeeling",
            "price": {"base": 3500.0},
            "property_units": [
                {"unit_type_code": "DELUXE", "unit_type_name": "Deluxe Room"},
                {"unit_type_code": "SUITE", "unit_type_name": "Suite"},
            ],
            "is_active": True,
            "created_at": datetime.utcnow(),
            "updated_at": datetime.utcnow()
        }
        result = await properties_collection.insert_one(property_doc)
        print(f"🏠 Created demo property: {result.inserted_id}")

    client.close()

if __name__ == "__main__":
    asyncio.run(seed_first_admin())
