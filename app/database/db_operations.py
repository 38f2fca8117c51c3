"""
Database operations - Generic CRUD functions for all collections
"""
from typing import List, Dict, Optional, Any
from bson import ObjectId
from bson.errors import InvalidId
from app.config.database import db_config
from datetime import datetime

class DBOperations:
    """Generic database operations for MongoDB collections.

    Every method takes an optional Motor ``session`` so the same helpers can
    run inside a transaction.
    """

    @staticmethod
    async def get_all(
        collection_name: str,
        filter_query: Dict = None,
        skip: int = 0,
        limit: int = 100,
        sort: Optional[List] = None,
        session=None,
    ) -> List[Dict]:
        """Get all documents from a collection with optional filtering"""
        collection = db_config.get_collection(collection_name)
        filter_query = filter_query or {}
        cursor = collection.find(filter_query, session=session)
        if sort:
            cursor = cursor.sort(sort)
        cursor = cursor.skip(skip).limit(limit)
        documents = await cursor.to_list(length=limit)
        return documents

    @staticmethod
    async def get_by_id(collection_name: str, doc_id: str, session=None) -> Optional[Dict]:
        """Get a single document by ID"""
        collection = db_config.get_collection(collection_name)
        try:
            oid = ObjectId(doc_id)
        except (InvalidId, TypeError):
            return None
        return await collection.find_one({"_id": oid}, session=session)

    @staticmethod
    async def get_one(collection_name: str, filter_query: Dict, session=None) -> Optional[Dict]:
        """Get a single document by filter query"""
        collection = db_config.get_collection(collection_name)
        document = await collection.find_one(filter_query, session=session)
        return document

    @staticmethod
    async def create(collection_name: str, document: Dict, session=None) -> Dict:
        """Create a new document"""
        collection = db_config.get_collection(collection_name)
        document["created_at"] = datetime.utcnow()
        document["updated_at"] = datetime.utcnow()
        result = await collection.insert_one(document, session=session)
        document["_id"] = result.inserted_id
        return document

    @staticmethod
    async def insert_many(collection_name: str, documents: List[Dict], session=None) -> int:
        """Insert several documents at once, returns the number inserted"""
        if not documents:
            return 0
        collection = db_config.get_collection(collection_name)
        now = datetime.utcnow()
        for document in documents:
            document["created_at"] = now
            document["updated_at"] = now
        result = await collection.insert_many(documents, session=session)
        return len(result.inserted_ids)

    @staticmethod
    async def update(collection_name: str, doc_id: str, update_data: Dict, session=None) -> Optional[Dict]:
        """Update a document by ID"""
        collection = db_config.get_collection(collection_name)
        update_data["updated_at"] = datetime.utcnow()
        try:
            oid = ObjectId(doc_id)
        except (InvalidId, TypeError):
            return None
        return await collection.find_one_and_update(
            {"_id": oid},
            {"$set": update_data},
            return_document=True,
            session=session,
        )

    @staticmethod
    async def increment(collection_name: str, doc_id: str, increments: Dict[str, Any], session=None) -> bool:
        """Atomically increment numeric fields of a document"""
        collection = db_config.get_collection(collection_name)
        try:
            oid = ObjectId(doc_id)
        except (InvalidId, TypeError):
            return False
        result = await collection.update_one(
            {"_id": oid},
            {"$inc": increments, "$set": {"updated_at": datetime.utcnow()}},
            session=session,
        )
        return result.matched_count > 0

    @staticmethod
    async def delete(collection_name: str, doc_id: str, session=None) -> bool:
        """Delete a document by ID"""
        collection = db_config.get_collection(collection_name)
        try:
            oid = ObjectId(doc_id)
        except (InvalidId, TypeError):
            return False
        result = await collection.delete_one({"_id": oid}, session=session)
        return result.deleted_count > 0

    @staticmethod
    async def delete_many(collection_name: str, filter_query: Dict, session=None) -> int:
        """Delete every document matching the filter, returns the count"""
        collection = db_config.get_collection(collection_name)
        result = await collection.delete_many(filter_query, session=session)
        return result.deleted_count

    @staticmethod
    async def count(collection_name: str, filter_query: Dict = None, session=None) -> int:
        """Count documents in a collection"""
        collection = db_config.get_collection(collection_name)
        filter_query = filter_query or {}
        count = await collection.count_documents(filter_query, session=session)
        return count

    @staticmethod
    async def aggregate(collection_name: str, pipeline: List[Dict], session=None) -> List[Dict]:
        """Execute aggregation pipeline"""
        collection = db_config.get_collection(collection_name)
        cursor = collection.aggregate(pipeline, session=session)
        results = await cursor.to_list(length=None)
        return results

db_ops = DBOperations()
