"""Persistence of profile documents in MongoDB.

All profiles live in one collection keyed by ``email``::

    users {_id: ObjectId,
           name: str,              required
           email: str,             required, unique index
           bio: str,               default ""
           createdAt: date,
           updatedAt: date}

The unique index is created by `ProfileStore.ensure_indexes`, which the
connection manager runs after every successful connection.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from profile_service.schemas import Profile

logger = logging.getLogger(__name__)

# No identity layer exists, so a fixed demo record stands in for "the" user.
DEMO_EMAIL = "anna.samson@example.com"
DEMO_NAME = "Anna Samson"
DEMO_BIO = "Passionate about coding and web development"


class ProfileValidationError(ValueError):
    """Raised when a profile write is missing required fields.

    Attributes:
        message: Short summary suitable for the ``error`` field of a response.
        errors: Mapping of field name to a human readable problem.
    """

    def __init__(self, message: str, errors: dict[str, str]):
        super().__init__(message)
        self.message = message
        self.errors = errors


def _utcnow() -> datetime:
    # BSON dates keep millisecond precision only.
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class ProfileStore:
    """Find, create and upsert profiles in a MongoDB collection.

    Args:
        collection: Async collection holding profile documents.
        clock: Returns the timestamp written to ``createdAt``/``updatedAt``.
    """

    def __init__(self, collection, clock: Callable[[], datetime] = _utcnow):
        self._collection = collection
        self._clock = clock

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("email", ASCENDING)], unique=True)

    async def fetch_or_create_demo(self) -> Profile:
        """Return the demo profile, creating it on first access."""
        document = await self._collection.find_one({"email": DEMO_EMAIL})
        if document is not None:
            return Profile.model_validate(document)

        now = self._clock()
        document = {
            "name": DEMO_NAME,
            "email": DEMO_EMAIL,
            "bio": DEMO_BIO,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            await self._collection.insert_one(document)
        except DuplicateKeyError:
            # A concurrent request created it first.
            document = await self._collection.find_one({"email": DEMO_EMAIL})
        else:
            logger.info("Default profile created for %s", DEMO_EMAIL)
        return Profile.model_validate(document)

    async def upsert(
        self,
        email: Optional[str],
        name: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> Profile:
        """Update the profile identified by *email*, creating it if absent.

        Fields passed as ``None`` are left untouched on an existing profile.

        Args:
            email: Natural key of the profile.
            name: New display name; required when the profile does not exist.
            bio: New biography; defaults to an empty string on creation.

        Returns:
            Profile: The profile as stored after the update.

        Raises:
            ProfileValidationError: If *email* is empty, or *name* is missing
                for a profile that would have to be created.
            pymongo.errors.PyMongoError: If the database operation fails.
        """
        email = (email or "").strip()
        if not email:
            raise ProfileValidationError(
                "Email is required", {"email": "Path `email` is required."}
            )
        if name is not None and not name:
            raise ProfileValidationError(
                "Validation Error", {"name": "Path `name` is required."}
            )

        now = self._clock()
        fields = {"updatedAt": now}
        on_insert = {"createdAt": now}
        if name is not None:
            fields["name"] = name
        if bio is not None:
            fields["bio"] = bio
        else:
            on_insert["bio"] = ""

        document = await self._collection.find_one_and_update(
            {"email": email},
            {"$set": fields, "$setOnInsert": on_insert},
            # Without a name an insert would violate the schema.
            upsert=name is not None,
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            raise ProfileValidationError(
                "Validation Error", {"name": "Path `name` is required."}
            )

        logger.info("Profile updated for %s", email)
        return Profile.model_validate(document)

    async def list_all(self) -> list[Profile]:
        documents = await self._collection.find({}).to_list(length=None)
        return [Profile.model_validate(document) for document in documents]
