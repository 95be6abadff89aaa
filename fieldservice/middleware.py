"""Request guards for the client portal."""
from functools import wraps

from flask import g, request, session

from fieldservice.database import get_session
from fieldservice.exceptions import UnauthorizedError
from fieldservice.services.portal_service import verify_portal_token

PORTAL_SESSION_KEY = 'portal_client_id'


def load_portal_client():
    """
    Resolve the portal client for this request into g.portal_client_id.

    A bearer token (API use) wins over the cookie session (browser use).
    """
    g.portal_client_id = None
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        g.portal_client_id = verify_portal_token(get_session(), auth_header[len('Bearer '):].strip())
    else:
        g.portal_client_id = session.get(PORTAL_SESSION_KEY)
    return g.portal_client_id


def require_portal_session(f):
    """Decorator: the request must carry a valid portal session or token."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not load_portal_client():
            raise UnauthorizedError('Open the link you received to access your account.')
        return f(*args, **kwargs)
    return decorated_function
