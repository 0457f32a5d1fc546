"""Per-user vote reconciliation on posts.

A post carries its tally (``upvote``/``downvote``) and a ``voters`` list of
``{"email", "type"}`` entries, one per email. Each vote is applied as a
single conditional update on the post document: the filter asserts the
voter state that was read, so a concurrent change by the same voter makes
the update miss and the vote is decided again from a fresh read.
"""
import logging
from enum import Enum
from typing import Optional, Union

from pymongo import ReturnDocument

from forum import config, errors


logger = logging.getLogger(__name__)


class VoteDirection(str, Enum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"

    @classmethod
    def parse(cls, value: Union[str, "VoteDirection"]) -> "VoteDirection":
        try:
            return cls(value)
        except ValueError:
            raise errors.ValidationError("Invalid vote type")


COUNTER_FIELDS = {
    VoteDirection.UPVOTE: "upvote",
    VoteDirection.DOWNVOTE: "downvote",
}


def counter_field(direction: VoteDirection) -> str:
    return COUNTER_FIELDS[direction]


def find_vote(post: dict, email: str) -> Optional[VoteDirection]:
    """Return the direction ``email`` currently holds on ``post``"""
    for voter in post.get("voters") or []:
        if voter.get("email") != email:
            continue
        try:
            return VoteDirection(voter.get("type"))
        except ValueError:
            logger.warning("Ignoring malformed voter entry %r", voter)
    return None


def plan_vote(post_id: str, email: str, previous: Optional[VoteDirection], direction: VoteDirection):
    """Build ``(status, filter, update)`` for one compare-and-swap attempt."""
    entry = {"email": email, "type": direction.value}

    if previous is None:
        query = {"post_id": post_id, "voters.email": {"$ne": email}}
        update = {
            "$inc": {counter_field(direction): 1},
            "$push": {"voters": entry},
        }
        return "vote_added", query, update

    query = {
        "post_id": post_id,
        "voters": {"$elemMatch": {"email": email, "type": previous.value}},
    }
    if previous is direction:
        update = {
            "$inc": {counter_field(direction): -1},
            "$pull": {"voters": {"email": email}},
        }
        return "vote_removed", query, update

    update = {
        "$inc": {counter_field(previous): -1, counter_field(direction): 1},
        "$set": {"voters.$.type": direction.value},
    }
    return "vote_changed", query, update


class VoteReconciler:
    def __init__(self, posts, max_attempts: int = None):
        self.posts = posts
        self.max_attempts = max_attempts or config.VOTE_MAX_ATTEMPTS

    @errors.wraps_storage_errors
    async def cast_vote(self, post_id: str, voter_email: str, direction) -> dict:
        """Apply ``voter_email``'s vote on ``post_id``.

        Voting again in the same direction retracts the vote, voting the
        other way switches it. Returns the outcome and the new tally.
        """
        direction = VoteDirection.parse(direction)
        if not voter_email:
            raise errors.Unauthorized()

        for attempt in range(1, self.max_attempts + 1):
            post = await self.posts.find_one({"post_id": post_id}, {"voters": 1})
            if not post:
                raise errors.NotFound("Post not found")

            previous = find_vote(post, voter_email)
            status, query, update = plan_vote(post_id, voter_email, previous, direction)

            # The pre-image is only returned when the guarded filter matched
            before = await self.posts.find_one_and_update(
                query,
                update,
                projection={"_id": 0, "upvote": 1, "downvote": 1},
                return_document=ReturnDocument.BEFORE,
            )
            if before is not None:
                logger.info("Vote on %s by %s: %s", post_id, voter_email, status)
                deltas = update["$inc"]
                return {
                    "status": status,
                    "post_id": post_id,
                    "upvote": before.get("upvote", 0) + deltas.get("upvote", 0),
                    "downvote": before.get("downvote", 0) + deltas.get("downvote", 0),
                    "vote": None if status == "vote_removed" else direction,
                }

            logger.warning(
                "Vote on %s by %s changed underneath (attempt %d/%d)",
                post_id, voter_email, attempt, self.max_attempts,
            )

        raise errors.Conflict("Vote was changed concurrently, try again")
