import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base


Base = declarative_base()


def default_id() -> str:
    return uuid.uuid4().hex


class ContactMessage(Base):
    __tablename__ = "contact_messages"

    id = Column(String(32), primary_key=True, default=default_id)
    session_id = Column(String(64), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    email = Column(String(254), nullable=False)
    phone = Column(String(32), nullable=True)
    subject = Column(String(256), nullable=True)
    message = Column(Text, nullable=False)
    page_source = Column(String(128), nullable=False, default="Contact Page")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class CareerApplication(Base):
    __tablename__ = "career_applications"

    id = Column(String(32), primary_key=True, default=default_id)
    session_id = Column(String(64), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    email = Column(String(254), nullable=False)
    phone = Column(String(32), nullable=True)
    role = Column(String(128), nullable=True)
    message = Column(Text, nullable=True)
    resume_link = Column(String(2048), nullable=False)
    reachable = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class DoctorReview(Base):
    __tablename__ = "doctor_reviews"

    id = Column(String(32), primary_key=True, default=default_id)
    session_id = Column(String(64), nullable=False, index=True)
    doctor_id = Column(String(128), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    email = Column(String(254), nullable=False)
    phone = Column(String(16), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False)
    approved = Column(Boolean, nullable=False, default=False)  # moderated before publishing
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class BlogComment(Base):
    __tablename__ = "blog_comments"

    id = Column(String(32), primary_key=True, default=default_id)
    session_id = Column(String(64), nullable=False, index=True)
    post_slug = Column(String(256), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    email = Column(String(254), nullable=False)
    phone = Column(String(32), nullable=False)
    question = Column(Text, nullable=False)
    approved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
