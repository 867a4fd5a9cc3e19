from __future__ import annotations

from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, IndexModel
from pymongo.errors import DuplicateKeyError

from ..errors import ConflictError
from ..models.user import User


class UserRepository:
    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_indexes([IndexModel([("email", ASCENDING)], unique=True)])

    async def insert(self, user: User) -> User:
        try:
            await self.collection.insert_one(user.model_dump(by_alias=True))
        except DuplicateKeyError as exc:
            raise ConflictError("Email already registered") from exc
        return user

    async def get(self, user_id: str) -> Optional[User]:
        document = await self.collection.find_one({"_id": user_id})
        return User(**document) if document else None

    async def get_by_email(self, email: str) -> Optional[User]:
        document = await self.collection.find_one({"email": email.lower()})
        return User(**document) if document else None

    async def record_login(self, user_id: str, at: datetime) -> None:
        await self.collection.update_one({"_id": user_id}, {"$set": {"last_login": at}})
