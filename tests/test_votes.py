import asyncio
import random

import pymongo.errors
import pytest

from forum import errors
from forum.votes import VoteDirection, VoteReconciler, find_vote, plan_vote
from tests.helpers import insert_post


UP = VoteDirection.UPVOTE
DOWN = VoteDirection.DOWNVOTE


async def load(db, post):
    return await db.posts.find_one({"post_id": post["post_id"]})


def assert_consistent(doc):
    emails = [voter["email"] for voter in doc["voters"]]
    assert len(emails) == len(set(emails))
    assert doc["upvote"] >= 0
    assert doc["downvote"] >= 0
    assert doc["upvote"] + doc["downvote"] == len(doc["voters"])
    assert doc["upvote"] == sum(1 for v in doc["voters"] if v["type"] == "upvote")


async def test_vote_switch_and_retract_scenario(db):
    post = await insert_post(db, "P")
    reconciler = VoteReconciler(db.posts)

    result = await reconciler.cast_vote(post["post_id"], "a@x.com", UP)
    assert result["status"] == "vote_added"
    doc = await load(db, post)
    assert (doc["upvote"], doc["downvote"]) == (1, 0)
    assert doc["voters"] == [{"email": "a@x.com", "type": "upvote"}]

    result = await reconciler.cast_vote(post["post_id"], "a@x.com", DOWN)
    assert result["status"] == "vote_changed"
    assert result["vote"] is DOWN
    doc = await load(db, post)
    assert (doc["upvote"], doc["downvote"]) == (0, 1)
    assert doc["voters"] == [{"email": "a@x.com", "type": "downvote"}]

    result = await reconciler.cast_vote(post["post_id"], "a@x.com", DOWN)
    assert result["status"] == "vote_removed"
    assert result["vote"] is None
    doc = await load(db, post)
    assert (doc["upvote"], doc["downvote"]) == (0, 0)
    assert doc["voters"] == []


async def test_first_vote_is_stored_once_and_reported(db):
    post = await insert_post(db, "P")

    result = await VoteReconciler(db.posts).cast_vote(post["post_id"], "a@x.com", "upvote")

    assert result == {
        "status": "vote_added",
        "post_id": post["post_id"],
        "upvote": 1,
        "downvote": 0,
        "vote": UP,
    }
    doc = await load(db, post)
    assert doc["voters"] == [{"email": "a@x.com", "type": "upvote"}]
    assert_consistent(doc)


async def test_same_direction_twice_retracts(db):
    post = await insert_post(db, "P", upvote=2, downvote=1, voters=[
        {"email": "b@x.com", "type": "upvote"},
        {"email": "c@x.com", "type": "upvote"},
        {"email": "d@x.com", "type": "downvote"},
    ])
    reconciler = VoteReconciler(db.posts)

    await reconciler.cast_vote(post["post_id"], "a@x.com", "upvote")
    result = await reconciler.cast_vote(post["post_id"], "a@x.com", "upvote")

    assert (result["upvote"], result["downvote"]) == (2, 1)
    doc = await load(db, post)
    assert "a@x.com" not in [v["email"] for v in doc["voters"]]
    assert_consistent(doc)


async def test_accepts_raw_direction_strings(db):
    post = await insert_post(db, "P")
    result = await VoteReconciler(db.posts).cast_vote(post["post_id"], "a@x.com", "downvote")
    assert (result["upvote"], result["downvote"]) == (0, 1)


async def test_invalid_direction_is_rejected_without_mutation(db):
    post = await insert_post(db, "P")
    with pytest.raises(errors.ValidationError):
        await VoteReconciler(db.posts).cast_vote(post["post_id"], "a@x.com", "sideways")
    doc = await load(db, post)
    assert (doc["upvote"], doc["downvote"], doc["voters"]) == (0, 0, [])


async def test_missing_post_is_not_found(db):
    with pytest.raises(errors.NotFound):
        await VoteReconciler(db.posts).cast_vote("missing", "a@x.com", UP)


async def test_votes_from_different_users_all_land(db):
    post = await insert_post(db, "P")
    reconciler = VoteReconciler(db.posts)

    await asyncio.gather(*[
        reconciler.cast_vote(post["post_id"], f"user{i}@x.com", UP if i % 3 else DOWN)
        for i in range(9)
    ])

    doc = await load(db, post)
    assert (doc["upvote"], doc["downvote"]) == (6, 3)
    assert_consistent(doc)


async def test_votes_on_one_post_leave_others_alone(db):
    first = await insert_post(db, "first")
    second = await insert_post(db, "second")
    await VoteReconciler(db.posts).cast_vote(first["post_id"], "a@x.com", UP)

    doc = await load(db, second)
    assert (doc["upvote"], doc["downvote"], doc["voters"]) == (0, 0, [])


async def test_counters_match_voters_for_any_sequence(db):
    post = await insert_post(db, "P")
    reconciler = VoteReconciler(db.posts)
    rng = random.Random(7)
    emails = ["a@x.com", "b@x.com", "c@x.com", "d@x.com"]
    expected = {}

    for _ in range(60):
        email = rng.choice(emails)
        direction = rng.choice([UP, DOWN])
        await reconciler.cast_vote(post["post_id"], email, direction)
        if expected.get(email) is direction:
            del expected[email]
        else:
            expected[email] = direction

        doc = await load(db, post)
        assert_consistent(doc)
        assert {v["email"]: v["type"] for v in doc["voters"]} == {
            email: direction.value for email, direction in expected.items()
        }


class StaleReads:
    """Serve an outdated post for the first ``times`` reads."""

    def __init__(self, posts, stale, times):
        self.posts = posts
        self.stale = stale
        self.times = times

    async def find_one(self, *args, **kwargs):
        if self.times:
            self.times -= 1
            return self.stale
        return await self.posts.find_one(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self.posts, name)


async def test_stale_read_is_decided_again(db):
    post = await insert_post(db, "P", upvote=1, voters=[{"email": "a@x.com", "type": "upvote"}])
    stale = {"voters": []}
    reconciler = VoteReconciler(StaleReads(db.posts, stale, times=1))

    # First attempt plans a fresh vote, which no longer matches; the retry sees the upvote
    result = await reconciler.cast_vote(post["post_id"], "a@x.com", UP)

    assert result["status"] == "vote_removed"
    doc = await load(db, post)
    assert (doc["upvote"], doc["downvote"], doc["voters"]) == (0, 0, [])


async def test_gives_up_after_max_attempts(db):
    post = await insert_post(db, "P", downvote=1, voters=[{"email": "a@x.com", "type": "downvote"}])
    reconciler = VoteReconciler(StaleReads(db.posts, {"voters": []}, times=10), max_attempts=3)

    with pytest.raises(errors.Conflict):
        await reconciler.cast_vote(post["post_id"], "a@x.com", UP)

    doc = await load(db, post)
    assert (doc["upvote"], doc["downvote"]) == (0, 1)
    assert_consistent(doc)


class BrokenPosts:
    async def find_one(self, *args, **kwargs):
        raise pymongo.errors.ServerSelectionTimeoutError("no servers")


async def test_storage_failure_surfaces_as_storage_error():
    with pytest.raises(errors.StorageError):
        await VoteReconciler(BrokenPosts()).cast_vote("p", "a@x.com", UP)


def test_switch_plan_is_a_single_guarded_update():
    status, query, update = plan_vote("p", "a@x.com", UP, DOWN)

    assert status == "vote_changed"
    assert query["voters"] == {"$elemMatch": {"email": "a@x.com", "type": "upvote"}}
    assert update["$inc"] == {"upvote": -1, "downvote": 1}
    assert update["$set"] == {"voters.$.type": "downvote"}


def test_new_vote_plan_requires_absent_voter():
    status, query, update = plan_vote("p", "a@x.com", None, UP)

    assert status == "vote_added"
    assert query["voters.email"] == {"$ne": "a@x.com"}
    assert update["$push"] == {"voters": {"email": "a@x.com", "type": "upvote"}}


def test_find_vote_ignores_malformed_entries():
    post = {"voters": [{"email": "a@x.com", "type": "sideways"}, {"email": "b@x.com"}]}

    assert find_vote(post, "a@x.com") is None
    assert find_vote(post, "b@x.com") is None


async def test_malformed_voter_entry_is_a_conflict_not_a_crash(db):
    post = await insert_post(db, "P", voters=[{"email": "a@x.com", "type": "sideways"}])

    with pytest.raises(errors.Conflict):
        await VoteReconciler(db.posts, max_attempts=2).cast_vote(post["post_id"], "a@x.com", UP)

    doc = await load(db, post)
    assert (doc["upvote"], doc["downvote"]) == (0, 0)
