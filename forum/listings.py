"""Read-side listings: post feeds enriched with comment counts, tag counts
and popular searches.

Comment counts are never stored on posts; they are joined in at read time
by matching ``comments.postId`` against ``posts.post_id``.
"""
import logging
import re
from enum import Enum
from typing import List, Optional

from pymongo import DESCENDING, ReturnDocument

from forum import config, errors
from forum.stores import NO_ID, utcnow
from utils.markdown_utils import convert_markdown
from utils.pagination import page_window


logger = logging.getLogger(__name__)


class FeedSort(str, Enum):
    NEWEST = "newest"
    POPULAR = "popular"

    @classmethod
    def parse(cls, value) -> "FeedSort":
        if value is None or value == "":
            return cls.NEWEST
        try:
            return cls(value)
        except ValueError:
            raise errors.ValidationError("Invalid sort option")


SORT_STAGES = {
    FeedSort.NEWEST: {"created_at": -1},
    FeedSort.POPULAR: {"voteDifference": -1, "created_at": -1},
}


def tag_search_query(search: Optional[str]) -> dict:
    """Match posts having a tag that contains ``search``, ignoring case"""
    if not search or not search.strip():
        return {}
    return {"tags": {"$regex": re.escape(search.strip()), "$options": "i"}}


def comment_count_stages(comments_collection: str = "comments") -> List[dict]:
    return [
        {
            "$lookup": {
                "from": comments_collection,
                "localField": "post_id",
                "foreignField": "postId",
                "as": "comments",
            }
        },
        {"$addFields": {"commentCount": {"$size": "$comments"}}},
        {"$project": {"_id": 0, "comments": 0}},
    ]


def feed_pipeline(query: dict, sort: dict, skip: int, limit: int,
                  comments_collection: str = "comments") -> List[dict]:
    return [
        {"$match": query},
        {"$addFields": {"voteDifference": {"$subtract": ["$upvote", "$downvote"]}}},
        {"$sort": sort},
        {"$skip": skip},
        {"$limit": limit},
    ] + comment_count_stages(comments_collection)


class ListingAggregator:
    def __init__(self, posts, comments, tags, searches):
        self.posts = posts
        self.comments = comments
        self.tags = tags
        self.searches = searches

    async def _page(self, query: dict, sort: dict, skip: int, limit: int) -> dict:
        pipeline = feed_pipeline(query, sort, skip, limit, self.comments.name)
        posts = await self.posts.aggregate(pipeline).to_list(None)
        total = await self.posts.count_documents(query)
        return {"posts": posts, "total": total}

    @errors.wraps_storage_errors
    async def feed(self, page=None, limit=None, sort=None, search: str = None) -> dict:
        """Global feed, newest or most voted first, optionally tag-searched"""
        order = FeedSort.parse(sort)
        skip, limit = page_window(page, limit, config.FEED_DEFAULT_LIMIT, config.MAX_PAGE_LIMIT)
        return await self._page(tag_search_query(search), SORT_STAGES[order], skip, limit)

    @errors.wraps_storage_errors
    async def author_feed(self, author_email: str, page=None, limit=None) -> dict:
        if not author_email:
            raise errors.ValidationError("Missing authorEmail")
        skip, limit = page_window(page, limit, config.AUTHOR_FEED_DEFAULT_LIMIT, config.MAX_PAGE_LIMIT)
        return await self._page(
            {"authorEmail": author_email}, SORT_STAGES[FeedSort.NEWEST], skip, limit
        )

    async def recent_posts(self, author_email: str) -> List[dict]:
        listing = await self.author_feed(author_email, 0, config.RECENT_POSTS_LIMIT)
        return listing["posts"]

    @errors.wraps_storage_errors
    async def post_detail(self, post_id: str) -> dict:
        pipeline = [{"$match": {"post_id": post_id}}] + comment_count_stages(self.comments.name)
        found = await self.posts.aggregate(pipeline).to_list(None)
        if not found:
            raise errors.NotFound("Post not found")
        post = found[0]
        post["descriptionHtml"] = convert_markdown(post.get("description", ""))
        return post

    @errors.wraps_storage_errors
    async def tag_summary(self) -> List[dict]:
        """Registered tags that appear on at least one post, with post counts.

        A post tagged twice with the same name counts twice.
        """
        registered = await self.tags.find({}, NO_ID).to_list(None)
        grouped = await self.posts.aggregate([
            {"$unwind": "$tags"},
            {"$group": {"_id": "$tags", "count": {"$sum": 1}}},
        ]).to_list(None)
        counts = {row["_id"]: row["count"] for row in grouped}

        summary = []
        for tag in registered:
            count = counts.get(tag.get("name"))
            if count:
                summary.append({**tag, "count": count})
        return summary

    @errors.wraps_storage_errors
    async def record_search(self, text: str) -> dict:
        if not isinstance(text, str) or not text.strip():
            raise errors.ValidationError("Missing search text")
        text = text.strip()
        record = await self.searches.find_one_and_update(
            {"text": text},
            {"$setOnInsert": {"created_at": utcnow()}, "$inc": {"votes": 1}},
            projection=NO_ID,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.debug("Search %r recorded (%s)", text, record.get("votes"))
        return record

    @errors.wraps_storage_errors
    async def top_searches(self, limit: int = None) -> List[dict]:
        cursor = (self.searches.find({}, NO_ID)
                  .sort([("votes", DESCENDING), ("created_at", DESCENDING)])
                  .limit(limit or config.TOP_SEARCHES_LIMIT))
        return await cursor.to_list(None)
