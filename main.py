##########
# Imports
##########
from fastapi import FastAPI, Depends, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import logging

from forum import config, errors
from forum.auth import create_access_token, email_from_token
from forum.db import connect, ensure_indexes
from forum.listings import ListingAggregator
from forum.models import (
    AnnouncementCreate,
    CommentCreate,
    CommentReport,
    LoginTouch,
    PaymentCreate,
    PostCreate,
    RoleUpdate,
    SearchCreate,
    TagCreate,
    TokenRequest,
    UserCreate,
    VoteRequest,
)
from forum.stores import (
    AnnouncementStore,
    CommentStore,
    PaymentStore,
    PostStore,
    TagRegistry,
    UserStore,
)
from forum.votes import VoteReconciler


#################
# Configuration
#################
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


#####################
# FastAPI App Setup
#####################
app = FastAPI(title="Talkora", description="Community forum with tags, comments and votes")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


##########
# Security
##########
# HTTP Bearer token dependency, the session cookie takes precedence
security = HTTPBearer(auto_error=False)


######################
# Database Connection
######################
db = connect()


def get_db():
    return db


def get_post_store(database=Depends(get_db)) -> PostStore:
    return PostStore(database.posts)


def get_comment_store(database=Depends(get_db)) -> CommentStore:
    return CommentStore(database.comments, database.posts)


def get_tag_registry(database=Depends(get_db)) -> TagRegistry:
    return TagRegistry(database.tags)


def get_user_store(database=Depends(get_db)) -> UserStore:
    return UserStore(database.users)


def get_announcement_store(database=Depends(get_db)) -> AnnouncementStore:
    return AnnouncementStore(database.announcements)


def get_payment_store(database=Depends(get_db)) -> PaymentStore:
    return PaymentStore(database.payments)


def get_reconciler(database=Depends(get_db)) -> VoteReconciler:
    return VoteReconciler(database.posts)


def get_aggregator(database=Depends(get_db)) -> ListingAggregator:
    return ListingAggregator(database.posts, database.comments, database.tags, database.searches)


##########
# Current User
##########
async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """Return the verified email of the caller or raise 401"""
    token = request.cookies.get(config.TOKEN_COOKIE_NAME)
    if not token and credentials:
        token = credentials.credentials
    return email_from_token(token)


async def require_admin(
    email: str = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
) -> str:
    """Return the caller's email if they hold the admin role, else raise 403"""
    if not await users.is_admin(email):
        logger.warning("Admin route refused for %s", email)
        raise errors.Forbidden("Forbidden: Admins only")
    return email


def require_self(email: str, caller: str):
    if email.lower() != caller.lower():
        logger.warning("%s tried to act on account %s", caller, email)
        raise errors.Forbidden("Forbidden access")


##################
# Error Handling
##################
@app.exception_handler(errors.ForumError)
async def forum_error_handler(request: Request, exc: errors.ForumError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


##############
# Startup Hook
##############
@app.on_event("startup")
async def startup_event():
    """Initialize DB indexes on startup"""
    await ensure_indexes(db)


##########
# Routes
##########
@app.get("/")
async def root():
    return {"name": "Talkora API", "status": "ok"}


##########
# Session
##########
@app.post("/jwt")
async def issue_token(payload: TokenRequest, response: Response):
    """Issue a session cookie for an externally verified email"""
    token = create_access_token({"email": payload.email})
    response.set_cookie(
        config.TOKEN_COOKIE_NAME,
        token,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="none" if config.COOKIE_SECURE else "strict",
    )
    return {"success": True}


@app.get("/logout")
async def logout(response: Response):
    """Log out user by deleting cookie"""
    response.delete_cookie(
        config.TOKEN_COOKIE_NAME,
        secure=config.COOKIE_SECURE,
        samesite="none" if config.COOKIE_SECURE else "strict",
    )
    return {"success": True}


##################
# Posts
##################
@app.get("/posts")
async def list_posts(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    sort: Optional[str] = None,
    search: Optional[str] = None,
    listings: ListingAggregator = Depends(get_aggregator),
):
    """Global feed, ``sort`` is newest (default) or popular"""
    return await listings.feed(page, limit, sort, search)


@app.post("/posts")
async def create_post(
    data: PostCreate,
    email: str = Depends(get_current_user),
    posts: PostStore = Depends(get_post_store),
):
    return await posts.create(
        email, data.title, data.description, data.tags,
        author_name=data.authorName, author_image=data.authorImage,
    )


@app.get("/posts/my-recent")
async def my_recent_posts(
    email: str = Depends(get_current_user),
    listings: ListingAggregator = Depends(get_aggregator),
):
    return await listings.recent_posts(email)


@app.get("/posts/{post_id}")
async def get_post(post_id: str, listings: ListingAggregator = Depends(get_aggregator)):
    return await listings.post_detail(post_id)


@app.delete("/posts/{post_id}")
async def delete_post(
    post_id: str,
    email: str = Depends(get_current_user),
    posts: PostStore = Depends(get_post_store),
):
    """Delete a post owned by the caller"""
    await posts.delete(post_id, email)
    return {"message": "Post deleted successfully"}


@app.patch("/posts/{post_id}/vote")
async def vote_post(
    post_id: str,
    payload: VoteRequest,
    email: str = Depends(get_current_user),
    reconciler: VoteReconciler = Depends(get_reconciler),
):
    """Handle upvote/downvote logic for a post"""
    return await reconciler.cast_vote(post_id, email, payload.type)


@app.get("/user-posts")
async def user_posts(
    authorEmail: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    email: str = Depends(get_current_user),
    listings: ListingAggregator = Depends(get_aggregator),
):
    return await listings.author_feed(authorEmail, page, limit)


@app.get("/users/posts-info")
async def posts_info(
    email: Optional[str] = None,
    caller: str = Depends(get_current_user),
    posts: PostStore = Depends(get_post_store),
    users: UserStore = Depends(get_user_store),
):
    if not email:
        raise errors.ValidationError("Missing email")
    count = await posts.count_by_author(email)
    user = await users.get(email)
    return {"count": count, "isMember": (user or {}).get("badge") == "gold"}


####################
# Tags & Searches
####################
@app.get("/tags")
async def list_tags(
    email: str = Depends(get_current_user),
    tags: TagRegistry = Depends(get_tag_registry),
):
    return await tags.all()


@app.post("/tags")
async def add_tag(
    payload: TagCreate,
    admin: str = Depends(require_admin),
    tags: TagRegistry = Depends(get_tag_registry),
):
    tag = await tags.add(payload.name)
    return {"success": True, **tag}


@app.get("/tags-with-counts")
async def tags_with_counts(listings: ListingAggregator = Depends(get_aggregator)):
    return await listings.tag_summary()


@app.post("/searches")
async def record_search(payload: SearchCreate, listings: ListingAggregator = Depends(get_aggregator)):
    return await listings.record_search(payload.text)


@app.get("/popular-searches")
async def popular_searches(listings: ListingAggregator = Depends(get_aggregator)):
    return await listings.top_searches()


##################
# Comments
##################
@app.post("/comments")
async def create_comment(payload: CommentCreate, comments: CommentStore = Depends(get_comment_store)):
    return await comments.create(payload.postId, payload.postTitle, payload.text, payload.userEmail)


@app.get("/comments")
async def list_comments(postId: Optional[str] = None, comments: CommentStore = Depends(get_comment_store)):
    return await comments.for_post(postId)


@app.get("/secure-comments/{post_id}")
async def list_comments_signed_in(
    post_id: str,
    email: str = Depends(get_current_user),
    comments: CommentStore = Depends(get_comment_store),
):
    """Comments of a post for a signed-in reader"""
    return await comments.for_post(post_id)


@app.patch("/report-comment/{comment_id}")
async def report_comment(
    comment_id: str,
    payload: CommentReport,
    email: str = Depends(get_current_user),
    comments: CommentStore = Depends(get_comment_store),
):
    await comments.report(comment_id, payload.feedback)
    return {"success": True}


@app.get("/reported-comments")
async def reported_comments(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    admin: str = Depends(require_admin),
    comments: CommentStore = Depends(get_comment_store),
):
    return await comments.reported(page, limit, config.ADMIN_DEFAULT_LIMIT)


@app.patch("/ignore-report/{comment_id}")
async def ignore_report(
    comment_id: str,
    admin: str = Depends(require_admin),
    comments: CommentStore = Depends(get_comment_store),
):
    await comments.ignore_report(comment_id)
    return {"success": True}


@app.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: str,
    admin: str = Depends(require_admin),
    comments: CommentStore = Depends(get_comment_store),
):
    await comments.delete(comment_id)
    return {"success": True}


##################
# Users
##################
@app.post("/users")
async def register_user(payload: UserCreate, users: UserStore = Depends(get_user_store)):
    result = await users.register(payload.email, payload.name, payload.image)
    return {"success": True, **result}


@app.get("/users/profile")
async def user_profile(
    email: str = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
):
    return await users.profile(email)


@app.get("/users/role/{email}")
async def user_role(
    email: str,
    caller: str = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
):
    return {"success": True, "role": await users.role(email)}


@app.patch("/users/role/{email}")
async def set_user_role(
    email: str,
    payload: RoleUpdate,
    admin: str = Depends(require_admin),
    users: UserStore = Depends(get_user_store),
):
    await users.set_role(email, payload.role)
    return {"success": True}


@app.patch("/users/membership/{email}")
async def grant_membership(
    email: str,
    caller: str = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
):
    require_self(email, caller)
    await users.grant_membership(email)
    return {"success": True, "badge": "gold"}


@app.patch("/users/{email}")
async def touch_login(
    email: str,
    payload: LoginTouch,
    caller: str = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
):
    require_self(email, caller)
    await users.touch_login(email, payload.last_login_time)
    return {"success": True, "message": "Last login time updated"}


@app.get("/users")
async def list_users(
    search: str = "",
    page: Optional[str] = None,
    limit: Optional[str] = None,
    admin: str = Depends(require_admin),
    users: UserStore = Depends(get_user_store),
):
    return await users.search(search, page, limit, config.ADMIN_DEFAULT_LIMIT)


@app.post("/payments")
async def record_payment(
    payload: PaymentCreate,
    caller: str = Depends(get_current_user),
    payments: PaymentStore = Depends(get_payment_store),
):
    require_self(payload.email, caller)
    return await payments.record(payload.email, payload.amount, payload.transactionId, payload.paymentMethod)


##################
# Announcements
##################
@app.get("/public-announcements")
async def public_announcements(announcements: AnnouncementStore = Depends(get_announcement_store)):
    return await announcements.all()


@app.get("/announcements")
async def list_announcements(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    admin: str = Depends(require_admin),
    announcements: AnnouncementStore = Depends(get_announcement_store),
):
    return await announcements.page(page, limit, config.ADMIN_DEFAULT_LIMIT)


@app.post("/announcements")
async def create_announcement(
    payload: AnnouncementCreate,
    admin: str = Depends(require_admin),
    announcements: AnnouncementStore = Depends(get_announcement_store),
):
    return await announcements.create(
        payload.title, payload.description, payload.authorName, payload.authorImage
    )


@app.delete("/announcements/{announcement_id}")
async def delete_announcement(
    announcement_id: str,
    admin: str = Depends(require_admin),
    announcements: AnnouncementStore = Depends(get_announcement_store),
):
    await announcements.delete(announcement_id)
    return {"success": True}


##################
# Admin
##################
@app.get("/admin/overview")
async def admin_overview(
    admin: str = Depends(require_admin),
    posts: PostStore = Depends(get_post_store),
    comments: CommentStore = Depends(get_comment_store),
    users: UserStore = Depends(get_user_store),
):
    return {
        "posts": await posts.count(),
        "comments": await comments.count(),
        "users": await users.count(),
    }


###############
# Entry Point
###############
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
