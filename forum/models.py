from typing import List, Optional

from pydantic import BaseModel, EmailStr


class TokenRequest(BaseModel):
    email: EmailStr


class UserCreate(BaseModel):
    email: EmailStr
    name: str
    image: str


class LoginTouch(BaseModel):
    last_login_time: Optional[str] = None


class RoleUpdate(BaseModel):
    role: str


class PostCreate(BaseModel):
    title: str
    description: str
    tags: List[str]
    authorName: Optional[str] = None
    authorImage: Optional[str] = None


class VoteRequest(BaseModel):
    # Checked against VoteDirection by the reconciler
    type: str


class CommentCreate(BaseModel):
    postId: str
    postTitle: str
    text: str
    userEmail: EmailStr


class CommentReport(BaseModel):
    feedback: str


class TagCreate(BaseModel):
    name: str


class SearchCreate(BaseModel):
    text: str


class AnnouncementCreate(BaseModel):
    title: str
    description: str
    authorName: str
    authorImage: str


class PaymentCreate(BaseModel):
    email: EmailStr
    amount: float
    transactionId: str
    paymentMethod: str
