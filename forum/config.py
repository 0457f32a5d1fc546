import os

from dotenv import load_dotenv


load_dotenv()

# JWT config
SECRET_KEY = os.getenv("SECRET_KEY", "change-this-secret-key-before-deploying")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", str(24 * 365)))
TOKEN_COOKIE_NAME = "token"
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

# MongoDB config
MONGODB_URL = os.getenv("MONGO_URI", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "talkora")

# CORS
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Listing and voting
FEED_DEFAULT_LIMIT = 5
AUTHOR_FEED_DEFAULT_LIMIT = 10
ADMIN_DEFAULT_LIMIT = 10
RECENT_POSTS_LIMIT = 3
TOP_SEARCHES_LIMIT = 3
MAX_PAGE_LIMIT = int(os.getenv("MAX_PAGE_LIMIT", "100"))
VOTE_MAX_ATTEMPTS = int(os.getenv("VOTE_MAX_ATTEMPTS", "3"))

PORT = int(os.getenv("PORT", "8000"))
