import uuid
from datetime import datetime, timedelta, timezone


BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


async def insert_post(db, title, minutes=0, tags=None, upvote=0, downvote=0,
                      author="author@example.com", voters=None):
    """Insert a post directly, ``minutes`` after BASE_TIME"""
    post = {
        "post_id": str(uuid.uuid4()),
        "title": title,
        "description": f"About {title}",
        "tags": tags or [],
        "authorEmail": author,
        "upvote": upvote,
        "downvote": downvote,
        "voters": voters or [],
        "visible": True,
        "created_at": BASE_TIME + timedelta(minutes=minutes),
    }
    await db.posts.insert_one(dict(post))
    return post


async def insert_comment(db, post, text="nice", email="reader@example.com"):
    await db.comments.insert_one({
        "comment_id": str(uuid.uuid4()),
        "postId": post["post_id"],
        "postTitle": post["title"],
        "text": text,
        "userEmail": email,
        "created_at": BASE_TIME,
    })
