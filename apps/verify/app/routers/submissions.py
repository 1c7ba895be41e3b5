import logging
import re

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from pediahelp_shared import Scope, is_email, mask_identifier

from ..consumers import claim_session
from ..database import get_db
from ..errors import AppError
from ..models import BlogComment, CareerApplication, ContactMessage, DoctorReview, default_id
from ..notify import send_notification
from ..otp_runtime import get_mailer, get_store
from ..schemas import BlogCommentSubmitIn, CareerSubmitIn, ContactSubmitIn, ReviewSubmitIn
from .. import share_links


router = APIRouter(prefix="/api", tags=["submissions"])
logger = logging.getLogger("pediahelp.verify")


def _require(*values) -> None:
    if not all(v is not None and str(v).strip() for v in values):
        raise AppError("bad_request")


def _save(db: Session, row) -> str:
    row.id = default_id()
    db.add(row)
    db.commit()
    return row.id


def _submit_failed(kind: str, exc: Exception) -> AppError:
    logger.error("[%s/submit] error: %s", kind, exc, exc_info=exc)
    return AppError("submit_failed", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def _claim(store, session_id: str, scope: Scope, kind: str) -> None:
    try:
        await claim_session(store, session_id, scope)
    except AppError:
        raise
    except Exception as exc:
        raise _submit_failed(kind, exc)


@router.post("/contact/submit")
async def contact_submit(
    payload: ContactSubmitIn,
    store=Depends(get_store),
    mailer=Depends(get_mailer),
    db: Session = Depends(get_db),
):
    _require(payload.session_id, payload.name, payload.email, payload.message)
    await _claim(store, payload.session_id, Scope.CONTACT, "contact")
    try:
        row_id = await run_in_threadpool(
            _save,
            db,
            ContactMessage(
                session_id=payload.session_id,
                name=payload.name.strip(),
                email=payload.email.strip(),
                phone=payload.phone or None,
                subject=payload.subject or None,
                message=payload.message,
                page_source=payload.page_source,
            ),
        )
        mail = await send_notification(
            mailer,
            "contact",
            payload.subject or f"New message from {payload.page_source}",
            {
                "Name": payload.name,
                "Email": payload.email,
                "Phone": payload.phone,
                "Page": payload.page_source,
                "Message": payload.message,
            },
        )
    except Exception as exc:
        raise _submit_failed("contact", exc)
    return {"ok": True, "id": row_id, "mail": mail}


@router.post("/careers/submit")
async def careers_submit(
    payload: CareerSubmitIn,
    store=Depends(get_store),
    mailer=Depends(get_mailer),
    db: Session = Depends(get_db),
):
    _require(payload.session_id, payload.name, payload.email, payload.resume_link)
    share_links.check_link_length(payload.resume_link)
    await _claim(store, payload.session_id, Scope.CAREERS, "careers")

    link = share_links.normalize_share_link(payload.resume_link)
    try:
        reachable = await share_links.probe_link(link)
        row_id = await run_in_threadpool(
            _save,
            db,
            CareerApplication(
                session_id=payload.session_id,
                name=payload.name.strip(),
                email=payload.email.strip(),
                phone=payload.phone or None,
                role=payload.role or None,
                message=payload.message or None,
                resume_link=link,
                reachable=reachable,
            ),
        )
        mail = await send_notification(
            mailer,
            "careers",
            f"Career application: {payload.role or 'General'}",
            {
                "Name": payload.name,
                "Email": payload.email,
                "Phone": payload.phone,
                "Role": payload.role,
                "Resume": link,
                "Link reachable": "yes" if reachable else "no",
                "Message": payload.message,
            },
        )
    except Exception as exc:
        raise _submit_failed("careers", exc)
    return {"ok": True, "id": row_id, "mail": mail}


@router.post("/reviews/submit")
async def reviews_submit(
    payload: ReviewSubmitIn,
    store=Depends(get_store),
    mailer=Depends(get_mailer),
    db: Session = Depends(get_db),
):
    _require(
        payload.session_id,
        payload.doctor_id,
        payload.name,
        payload.email,
        payload.phone,
        payload.comment,
        payload.rating,
    )
    if not 1 <= payload.rating <= 5:
        raise AppError("invalid_rating")
    if not is_email(payload.email):
        raise AppError("invalid_email")
    phone = re.sub(r"\D", "", payload.phone)
    if len(phone) != 10:
        raise AppError("invalid_phone")
    await _claim(store, payload.session_id, Scope.REVIEW, "reviews")
    try:
        row_id = await run_in_threadpool(
            _save,
            db,
            DoctorReview(
                session_id=payload.session_id,
                doctor_id=payload.doctor_id,
                name=payload.name.strip(),
                email=payload.email.strip(),
                phone=phone,
                rating=round(payload.rating),
                comment=payload.comment.strip(),
            ),
        )
        logger.info("Review %s stored for doctor=%s by %s", row_id, payload.doctor_id, mask_identifier(payload.email))
        mail = await send_notification(
            mailer,
            "review",
            "New doctor review awaiting moderation",
            {
                "Doctor": payload.doctor_id,
                "Name": payload.name,
                "Email": payload.email,
                "Phone": phone,
                "Rating": round(payload.rating),
                "Comment": payload.comment,
            },
        )
    except Exception as exc:
        raise _submit_failed("reviews", exc)
    return {"ok": True, "id": row_id, "mail": mail}


@router.post("/blog-comments/submit")
async def blog_comments_submit(
    payload: BlogCommentSubmitIn,
    store=Depends(get_store),
    mailer=Depends(get_mailer),
    db: Session = Depends(get_db),
):
    _require(payload.session_id, payload.slug, payload.name, payload.email, payload.phone, payload.question)
    await _claim(store, payload.session_id, Scope.BLOG_COMMENT, "blog-comments")
    try:
        row_id = await run_in_threadpool(
            _save,
            db,
            BlogComment(
                session_id=payload.session_id,
                post_slug=payload.slug.strip(),
                name=payload.name.strip(),
                email=payload.email.strip(),
                phone=payload.phone.strip(),
                question=payload.question.strip(),
            ),
        )
        mail = await send_notification(
            mailer,
            "blog-comment",
            f"New question on {payload.slug}",
            {
                "Post": payload.slug,
                "Name": payload.name,
                "Email": payload.email,
                "Phone": payload.phone,
                "Question": payload.question,
            },
        )
    except Exception as exc:
        raise _submit_failed("blog-comments", exc)
    return {"ok": True, "id": row_id, "mail": mail}
