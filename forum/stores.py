"""Collection-backed stores for posts, comments, tags and their collaborators.

Every store receives the Motor collection(s) it works on; none of them
opens a connection of its own.
"""
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import pymongo.errors
from pymongo import DESCENDING

from forum import config, errors
from utils.pagination import page_window


logger = logging.getLogger(__name__)

NO_ID = {"_id": 0}


def utcnow():
    return datetime.now(timezone.utc)


def normalize_tags(tags) -> List[str]:
    """Trim and lowercase tags, keeping order and duplicates"""
    if not isinstance(tags, (list, tuple)):
        raise errors.ValidationError("Missing or invalid fields")
    normalized = [str(tag).strip().lower() for tag in tags]
    return [tag for tag in normalized if tag]


def _require_text(value, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise errors.ValidationError(message)
    return value.strip()


##########
# Posts
##########
class PostStore:
    def __init__(self, posts):
        self.posts = posts

    @errors.wraps_storage_errors
    async def create(self, author_email: str, title: str, description: str, tags,
                     author_name: str = None, author_image: str = None) -> dict:
        title = _require_text(title, "Missing or invalid fields")
        description = _require_text(description, "Missing or invalid fields")
        tag_list = normalize_tags(tags)

        post_doc = {
            "post_id": str(uuid.uuid4()),
            "title": title,
            "description": description,
            "tags": tag_list,
            "authorEmail": author_email,
            "authorName": author_name,
            "authorImage": author_image,
            "upvote": 0,
            "downvote": 0,
            "voters": [],
            "visible": True,
            "created_at": utcnow(),
        }
        await self.posts.insert_one(post_doc)
        post_doc.pop("_id", None)
        logger.info("Post %s created by %s", post_doc["post_id"], author_email)
        return post_doc

    @errors.wraps_storage_errors
    async def delete(self, post_id: str, requester_email: str) -> None:
        """Delete a post owned by ``requester_email``"""
        post = await self.posts.find_one({"post_id": post_id}, {"authorEmail": 1})
        if not post:
            raise errors.NotFound("Post not found")
        if post.get("authorEmail") != requester_email:
            logger.warning("%s tried to delete post %s of %s",
                           requester_email, post_id, post.get("authorEmail"))
            raise errors.Forbidden("Unauthorized to delete this post")

        result = await self.posts.delete_one({"post_id": post_id, "authorEmail": requester_email})
        if result.deleted_count == 0:
            raise errors.NotFound("Post not found")
        logger.info("Post %s deleted by %s", post_id, requester_email)

    @errors.wraps_storage_errors
    async def count_by_author(self, author_email: str) -> int:
        return await self.posts.count_documents({"authorEmail": author_email})

    @errors.wraps_storage_errors
    async def count(self) -> int:
        return await self.posts.estimated_document_count()


##########
# Comments
##########
class CommentStore:
    def __init__(self, comments, posts):
        self.comments = comments
        self.posts = posts

    @errors.wraps_storage_errors
    async def create(self, post_id: str, post_title: str, text: str, user_email: str) -> dict:
        post_id = _require_text(post_id, "Invalid comment data")
        post_title = _require_text(post_title, "Invalid comment data")
        text = _require_text(text, "Invalid comment data")
        user_email = _require_text(user_email, "Invalid comment data")

        if not await self.posts.find_one({"post_id": post_id}, {"_id": 1}):
            raise errors.NotFound("Post not found")

        comment_doc = {
            "comment_id": str(uuid.uuid4()),
            "postId": post_id,
            "postTitle": post_title,
            "text": text,
            "userEmail": user_email,
            "created_at": utcnow(),
        }
        await self.comments.insert_one(comment_doc)
        comment_doc.pop("_id", None)
        return comment_doc

    @errors.wraps_storage_errors
    async def for_post(self, post_id: str) -> List[dict]:
        if not post_id:
            raise errors.ValidationError("Missing postId")
        cursor = self.comments.find({"postId": post_id}, NO_ID).sort("created_at", DESCENDING)
        return await cursor.to_list(None)

    @errors.wraps_storage_errors
    async def report(self, comment_id: str, feedback: str) -> None:
        feedback = _require_text(feedback, "Missing feedback")
        result = await self.comments.update_one(
            {"comment_id": comment_id},
            {"$set": {"feedback": feedback, "reported": True}},
        )
        if result.matched_count == 0:
            raise errors.NotFound("Comment not found")
        logger.info("Comment %s reported", comment_id)

    @errors.wraps_storage_errors
    async def ignore_report(self, comment_id: str) -> None:
        result = await self.comments.update_one(
            {"comment_id": comment_id},
            {"$unset": {"feedback": "", "reported": ""}},
        )
        if result.matched_count == 0:
            raise errors.NotFound("Comment not found")

    @errors.wraps_storage_errors
    async def delete(self, comment_id: str) -> None:
        result = await self.comments.delete_one({"comment_id": comment_id})
        if result.deleted_count == 0:
            raise errors.NotFound("Comment not found")
        logger.info("Comment %s deleted", comment_id)

    @errors.wraps_storage_errors
    async def reported(self, page=None, limit=None, default_limit: int = 10) -> dict:
        query = {"reported": True}
        skip, limit = page_window(page, limit, default_limit, config.MAX_PAGE_LIMIT)
        cursor = (self.comments.find(query, NO_ID)
                  .sort("created_at", DESCENDING).skip(skip).limit(limit))
        comments = await cursor.to_list(None)
        total = await self.comments.count_documents(query)
        return {"comments": comments, "total": total}

    @errors.wraps_storage_errors
    async def count(self) -> int:
        return await self.comments.estimated_document_count()


##########
# Tags
##########
class TagRegistry:
    def __init__(self, tags):
        self.tags = tags

    @errors.wraps_storage_errors
    async def add(self, name: str) -> dict:
        name = _require_text(name, "Tag name is required").lower()
        if await self.tags.find_one({"name": name}):
            raise errors.Conflict("Tag already exists")
        try:
            await self.tags.insert_one({"name": name})
        except pymongo.errors.DuplicateKeyError:
            raise errors.Conflict("Tag already exists")
        logger.info("Tag %r added", name)
        return {"name": name}

    @errors.wraps_storage_errors
    async def all(self) -> List[dict]:
        return await self.tags.find({}, NO_ID).to_list(None)


##########
# Users
##########
class UserStore:
    def __init__(self, users):
        self.users = users

    @errors.wraps_storage_errors
    async def register(self, email: str, name: str, image: str) -> dict:
        """Create the user unless the email is already known; new users get the "user" role"""
        email = _require_text(email, "Name, email, and photo are required").lower()
        name = _require_text(name, "Name, email, and photo are required")
        image = _require_text(image, "Name, email, and photo are required")

        if await self.users.find_one({"email": email}, {"_id": 1}):
            return {"existing": True, "email": email}

        now = utcnow().isoformat()
        await self.users.insert_one({
            "email": email,
            "name": name,
            "image": image,
            "role": "user",
            "created_at": now,
            "last_login_time": now,
        })
        logger.info("User %s registered", email)
        return {"existing": False, "email": email}

    @errors.wraps_storage_errors
    async def get(self, email: str) -> Optional[dict]:
        return await self.users.find_one({"email": email.lower()}, NO_ID)

    async def role(self, email: str) -> str:
        user = await self.get(email)
        return (user or {}).get("role") or "user"

    async def is_admin(self, email: str) -> bool:
        return await self.role(email) == "admin"

    @errors.wraps_storage_errors
    async def touch_login(self, email: str, when: str = None) -> None:
        result = await self.users.update_one(
            {"email": email.lower()},
            {"$set": {"last_login_time": when or utcnow().isoformat()}},
        )
        if result.matched_count == 0:
            raise errors.NotFound("User not found")

    async def profile(self, email: str) -> dict:
        user = await self.get(email)
        if not user:
            raise errors.Forbidden("Forbidden access")
        fields = ("name", "email", "image", "badge", "created_at", "last_login_time")
        return {field: user.get(field) for field in fields}

    @errors.wraps_storage_errors
    async def search(self, text: str = "", page=None, limit=None, default_limit: int = 10) -> dict:
        pattern = {"$regex": re.escape(text or ""), "$options": "i"}
        query = {"$or": [{"name": pattern}, {"email": pattern}]}
        skip, limit = page_window(page, limit, default_limit, config.MAX_PAGE_LIMIT)
        cursor = (self.users.find(query, NO_ID)
                  .sort("created_at", DESCENDING).skip(skip).limit(limit))
        users = await cursor.to_list(None)
        total = await self.users.count_documents(query)
        return {"total": total, "users": users}

    @errors.wraps_storage_errors
    async def set_role(self, email: str, role: str) -> None:
        role = _require_text(role, "Role is required")
        result = await self.users.update_one({"email": email.lower()}, {"$set": {"role": role}})
        if result.matched_count == 0:
            raise errors.NotFound("User not found")
        logger.info("Role of %s set to %s", email, role)

    @errors.wraps_storage_errors
    async def grant_membership(self, email: str) -> None:
        result = await self.users.update_one(
            {"email": email.lower()},
            {"$set": {"isMember": True, "badge": "gold"}},
        )
        if result.matched_count == 0:
            raise errors.NotFound("User not found")

    @errors.wraps_storage_errors
    async def count(self) -> int:
        return await self.users.estimated_document_count()


##########
# Announcements
##########
class AnnouncementStore:
    def __init__(self, announcements):
        self.announcements = announcements

    @errors.wraps_storage_errors
    async def create(self, title: str, description: str, author_name: str, author_image: str) -> dict:
        message = "All fields are required"
        doc = {
            "announcement_id": str(uuid.uuid4()),
            "title": _require_text(title, message),
            "description": _require_text(description, message),
            "authorName": _require_text(author_name, message),
            "authorImage": _require_text(author_image, message),
            "created_at": utcnow(),
        }
        await self.announcements.insert_one(doc)
        doc.pop("_id", None)
        return doc

    @errors.wraps_storage_errors
    async def all(self) -> List[dict]:
        cursor = self.announcements.find({}, NO_ID).sort("created_at", DESCENDING)
        return await cursor.to_list(None)

    @errors.wraps_storage_errors
    async def page(self, page=None, limit=None, default_limit: int = 10) -> dict:
        skip, limit = page_window(page, limit, default_limit, config.MAX_PAGE_LIMIT)
        cursor = (self.announcements.find({}, NO_ID)
                  .sort("created_at", DESCENDING).skip(skip).limit(limit))
        announcements = await cursor.to_list(None)
        total = await self.announcements.count_documents({})
        return {"total": total, "announcements": announcements}

    @errors.wraps_storage_errors
    async def delete(self, announcement_id: str) -> None:
        result = await self.announcements.delete_one({"announcement_id": announcement_id})
        if result.deleted_count == 0:
            raise errors.NotFound("Announcement not found")


##########
# Payments
##########
class PaymentStore:
    def __init__(self, payments):
        self.payments = payments

    @errors.wraps_storage_errors
    async def record(self, email: str, amount: float, transaction_id: str, payment_method: str) -> dict:
        if not email or not amount or amount <= 0:
            raise errors.ValidationError("Missing required fields")
        paid_at = utcnow()
        doc = {
            "email": email.lower(),
            "amount": amount,
            "transactionId": _require_text(transaction_id, "Missing required fields"),
            "paymentMethod": _require_text(payment_method, "Missing required fields"),
            "paid_at": paid_at,
            "paid_at_string": paid_at.isoformat(),
        }
        await self.payments.insert_one(doc)
        doc.pop("_id", None)
        logger.info("Payment %s recorded for %s", doc["transactionId"], doc["email"])
        return doc
