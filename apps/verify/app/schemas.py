from typing import Any, Optional

from pydantic import BaseModel, Field


class VerifyStartIn(BaseModel):
    identifier: Any = None
    channel: str = "auto"
    scope: str = "contact"
    recaptcha_token: Optional[str] = Field(default=None, alias="recaptchaToken")
    honeypot: Any = None
    started_at: Any = Field(default=None, alias="startedAt")


class VerifyCheckIn(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    otp: Optional[str] = None
    code: Optional[str] = None


class SendOtpIn(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    identifier: Optional[str] = None
    channel: str = "auto"


class ContactSubmitIn(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None
    subject: Optional[str] = None
    page_source: str = Field(default="Contact Page", alias="pageSource")


class CareerSubmitIn(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    message: Optional[str] = None
    resume_link: Optional[str] = Field(default=None, alias="resumeLink")


class ReviewSubmitIn(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    doctor_id: Optional[str] = Field(default=None, alias="doctorId")
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    comment: Optional[str] = None
    rating: Optional[float] = None


class BlogCommentSubmitIn(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    slug: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    question: Optional[str] = None
