"""
Client portal blueprint.

Staff issue a link for a client; opening the link (or posting its token)
starts a portal session in which the client sees their jobs, estimates,
invoices and payments, and can approve or reject sent estimates.
"""
from flask import Blueprint, jsonify, request, session, g, current_app

from fieldservice.database import get_session
from fieldservice.middleware import PORTAL_SESSION_KEY, require_portal_session
from fieldservice.services.portal_service import (
    generate_portal_link,
    verify_portal_token,
    revoke_portal_tokens,
    get_portal_dashboard,
    respond_to_estimate,
)

portal_bp = Blueprint('portal', __name__, url_prefix='/portal')


def _cache():
    return current_app.extensions.get('cache')


def _start_session(token: str):
    client_id = verify_portal_token(get_session(), token)
    session.clear()
    session[PORTAL_SESSION_KEY] = client_id
    session.permanent = True
    return jsonify({'status': 'success', 'client_id': client_id})


@portal_bp.route('/clients/<client_id>/link', methods=['POST'])
def issue_link(client_id):
    """Body (optional): {"ttl_hours": 24}"""
    data = request.get_json(silent=True) or {}
    link = generate_portal_link(get_session(), client_id, ttl_hours=data.get('ttl_hours'))
    return jsonify({'status': 'success', **link}), 201


@portal_bp.route('/clients/<client_id>/link', methods=['DELETE'])
def revoke_links(client_id):
    revoked = revoke_portal_tokens(get_session(), client_id)
    return jsonify({'status': 'success', 'revoked': revoked})


@portal_bp.route('', methods=['GET'])
def open_link():
    """Landing URL from the emailed link: /portal?token=..."""
    return _start_session(request.args.get('token', ''))


@portal_bp.route('/session', methods=['POST'])
def create_session():
    data = request.get_json(silent=True) or {}
    return _start_session(data.get('token', ''))


@portal_bp.route('/dashboard')
@require_portal_session
def dashboard():
    data = get_portal_dashboard(get_session(), g.portal_client_id, _cache())
    return jsonify({'status': 'success', 'dashboard': data})


@portal_bp.route('/estimates/<estimate_id>/approve', methods=['POST'])
@require_portal_session
def approve_estimate(estimate_id):
    estimate = respond_to_estimate(get_session(), g.portal_client_id, estimate_id, True, _cache())
    return jsonify({'status': 'success', 'estimate': estimate})


@portal_bp.route('/estimates/<estimate_id>/reject', methods=['POST'])
@require_portal_session
def reject_estimate(estimate_id):
    estimate = respond_to_estimate(get_session(), g.portal_client_id, estimate_id, False, _cache())
    return jsonify({'status': 'success', 'estimate': estimate})


@portal_bp.route('/logout', methods=['POST'])
def logout():
    session.pop(PORTAL_SESSION_KEY, None)
    return jsonify({'status': 'success'})
