"""
Client portal service.

Clients reach the portal through a signed link (PyJWT, HS256). Each issued
link has a PortalAccessToken row keyed by the token's `jti`, so links can be
revoked and their last use is tracked. Nothing returned from here carries
internal cost or margin.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import jwt
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldservice.exceptions import NotFoundError, UnauthorizedError, WorkflowError
from fieldservice.models import Client, Estimate, Invoice, Job, Payment, PortalAccessToken
from fieldservice.services.cache_service import CacheService, PORTAL_MODULE
from fieldservice.services.document_service import load_document, load_line_items
from fieldservice.utils.number_format import ZERO

logger = logging.getLogger(__name__)

TOKEN_TYPE = 'portal'
CACHE_MODULE = PORTAL_MODULE


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _secret_key() -> str:
    return current_app.config['SECRET_KEY']


def generate_portal_link(session: Session, client_id: str, ttl_hours: Optional[int] = None) -> Dict[str, Any]:
    """Issue a portal link for a client."""
    client = session.get(Client, client_id)
    if not client:
        raise NotFoundError(f"Client {client_id} not found.")

    ttl_hours = ttl_hours or current_app.config.get('PORTAL_TOKEN_TTL_HOURS', 72)
    issued_at = _now()
    expires_at = issued_at + timedelta(hours=ttl_hours)
    jti = uuid.uuid4().hex

    payload = {
        'sub': client.id,
        'jti': jti,
        'type': TOKEN_TYPE,
        'iat': issued_at,
        'exp': expires_at,
    }
    token = jwt.encode(payload, _secret_key(), algorithm='HS256')

    try:
        session.add(PortalAccessToken(client_id=client.id, jti=jti, expires_at=expires_at))
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    base_url = current_app.config.get('PORTAL_BASE_URL', '').rstrip('/')
    logger.info(f"[PORTAL] Link issued for client {client.id} (expires {expires_at.isoformat()})")
    return {
        'token': token,
        'url': f"{base_url}/portal?token={token}",
        'expires_at': expires_at.isoformat(),
        'jti': jti,
    }


def verify_portal_token(session: Session, token: str) -> str:
    """
    Validate a portal token and return the client id it grants access to.

    Raises:
        UnauthorizedError: expired, malformed, revoked or unknown token
    """
    if not token:
        raise UnauthorizedError('Missing portal token.')
    try:
        payload = jwt.decode(token, _secret_key(), algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError('This portal link has expired. Ask for a new one.')
    except jwt.InvalidTokenError:
        raise UnauthorizedError('Invalid portal link.')

    if payload.get('type') != TOKEN_TYPE or not payload.get('jti') or not payload.get('sub'):
        raise UnauthorizedError('Invalid portal link.')

    access = session.query(PortalAccessToken).filter_by(jti=payload['jti']).first()
    if not access or access.revoked or access.client_id != payload['sub']:
        raise UnauthorizedError('This portal link is no longer valid.')

    try:
        access.last_used_at = _now()
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.warning(f"[PORTAL] Could not record token use: {e}")

    return payload['sub']


def revoke_portal_tokens(session: Session, client_id: str) -> int:
    """Revoke every outstanding link for a client. Returns how many were revoked."""
    try:
        count = session.query(PortalAccessToken).filter_by(client_id=client_id, revoked=False) \
            .update({PortalAccessToken.revoked: True}, synchronize_session=False)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    logger.info(f"[PORTAL] Revoked {count} links for client {client_id}")
    return count


def _document_summary(session: Session, document) -> Dict[str, Any]:
    items = load_line_items(session, document.document_type, document.id)
    summary = {
        'id': document.id,
        'number': document.number,
        'job_id': document.job_id,
        'status': document.status,
        'subtotal': float(document.subtotal or 0),
        'tax_amount': float(document.tax_amount or 0),
        'total': float(document.total or 0),
        'notes': document.notes,
        'items': [item.to_dict(include_cost=False) for item in items],
        'created_at': _iso(document.created_at),
    }
    if document.document_type == 'invoice':
        summary.update({
            'amount_paid': float(document.amount_paid or 0),
            'balance': float(document.balance or 0),
            'due_date': _iso(document.due_date),
        })
    else:
        summary['valid_until'] = _iso(document.valid_until)
    return summary


def build_portal_dashboard(session: Session, client_id: str) -> Dict[str, Any]:
    """Aggregate everything a client can see: jobs, estimates, invoices, payments."""
    client = session.get(Client, client_id)
    if not client:
        raise NotFoundError(f"Client {client_id} not found.")

    jobs = session.query(Job).filter(Job.client_id == client_id).order_by(Job.created_at.desc()).all()
    job_ids = [job.id for job in jobs]

    estimates, invoices, payments = [], [], []
    if job_ids:
        estimates = session.query(Estimate).filter(
            Estimate.job_id.in_(job_ids), Estimate.status != 'draft'
        ).order_by(Estimate.created_at.desc()).all()
        invoices = session.query(Invoice).filter(
            Invoice.job_id.in_(job_ids), Invoice.status != 'draft'
        ).order_by(Invoice.created_at.desc()).all()
        invoice_ids = [invoice.id for invoice in invoices]
        if invoice_ids:
            payments = session.query(Payment).filter(
                Payment.invoice_id.in_(invoice_ids)
            ).order_by(Payment.paid_at.desc()).all()

    open_invoices = [i for i in invoices if i.status not in ('paid', 'cancelled', 'converted')]
    outstanding = sum((Decimal(i.balance or 0) for i in open_invoices), ZERO)

    return {
        'client': {
            'id': client.id,
            'name': client.name,
            'email': client.email,
            'phone': client.phone,
        },
        'jobs': [
            {'id': j.id, 'title': j.title, 'status': j.status, 'address': j.address, 'created_at': _iso(j.created_at)}
            for j in jobs
        ],
        'estimates': [_document_summary(session, e) for e in estimates],
        'invoices': [_document_summary(session, i) for i in invoices],
        'payments': [
            {'id': p.id, 'invoice_id': p.invoice_id, 'amount': float(p.amount), 'method': p.method, 'paid_at': _iso(p.paid_at)}
            for p in payments
        ],
        'summary': {
            'pending_estimates': sum(1 for e in estimates if e.status == 'sent'),
            'open_invoices': len(open_invoices),
            'outstanding_balance': float(outstanding),
        },
    }


def get_portal_dashboard(session: Session, client_id: str, cache: Optional[CacheService] = None) -> Dict[str, Any]:
    """Dashboard through the Redis cache (cache-aside, degrades to a direct load)."""
    if cache is None:
        return build_portal_dashboard(session, client_id)
    ttl = current_app.config.get('CACHE_PORTAL_TTL', 120)
    return cache.memoize(client_id, CACHE_MODULE, 'dashboard',
                         lambda: build_portal_dashboard(session, client_id), ttl=ttl)


def respond_to_estimate(
    session: Session,
    client_id: str,
    estimate_id: str,
    approve: bool,
    cache: Optional[CacheService] = None,
) -> Dict[str, Any]:
    """Approve or reject a sent estimate on behalf of the client who owns it."""
    estimate = session.query(Estimate).join(Job).filter(
        Estimate.id == estimate_id, Job.client_id == client_id
    ).first()
    # Someone else's estimate looks the same as a missing one
    if not estimate:
        raise NotFoundError(f"Estimate {estimate_id} not found.")
    if estimate.status != 'sent':
        raise WorkflowError(f"Estimate {estimate.number} is {estimate.status} and can no longer be answered.")

    new_status = 'approved' if approve else 'rejected'
    try:
        estimate.status = new_status
        estimate.version = estimate.version + 1
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    if cache is not None:
        cache.invalidate_module(client_id, CACHE_MODULE)

    logger.info(f"[PORTAL] Client {client_id} {new_status} estimate {estimate.number}")
    return load_document(session, 'estimate', estimate_id).to_dict(include_cost=False)
