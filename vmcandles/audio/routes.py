# vmcandles/audio/routes.py
import secrets
import string

from flask import Blueprint, request, jsonify, current_app, g
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import IntegrityError

from .. import db
from ..models import AudioContent, AudioAccessKey
from ..services.subscription_service import (
    parse_plan, get_access_grant, can_stream, can_access_in_library
)
from ..utils import (
    json_body, sanitize_input, error_response, pagination_dict, parse_bool_arg, parse_int_arg,
    admin_required, current_user_id, utcnow, add_months
)

audio_bp = Blueprint('audio_bp', __name__, url_prefix='/api/audio')

KEY_ALPHABET = string.ascii_uppercase + string.digits
MAX_KEYS_PER_REQUEST = 100


def generate_key_code():
    """Access key in the form VM-XXXXX-XXXXX."""
    parts = [''.join(secrets.choice(KEY_ALPHABET) for _ in range(5)) for _ in range(2)]
    return f"VM-{parts[0]}-{parts[1]}"


@audio_bp.route('', methods=['GET'])
def get_audio_list():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 20, maximum=100)
    query = AudioContent.query
    if request.args.get('category'):
        query = query.filter(AudioContent.category == request.args['category'])
    is_preview = parse_bool_arg(request.args.get('is_preview'))
    if is_preview is not None:
        query = query.filter(AudioContent.is_preview.is_(is_preview))
    pagination = query.order_by(AudioContent.sort_order, AudioContent.id).paginate(page=page, per_page=limit, error_out=False)
    return jsonify(success=True,
                   audio=[a.to_dict(include_file_url=a.is_preview) for a in pagination.items],
                   pagination=pagination_dict(page, limit, pagination.total))


@audio_bp.route('/<int:audio_id>', methods=['GET'])
def get_audio(audio_id):
    audio = db.session.get(AudioContent, audio_id)
    if not audio:
        return error_response('AUDIO_NOT_FOUND', "Audio content not found", 404)
    return jsonify(success=True, audio=audio.to_dict(include_file_url=audio.is_preview))


@audio_bp.route('/<int:audio_id>/stream', methods=['GET'])
def stream_audio(audio_id):
    """Previews are public; everything else needs a subscription or access key with a sufficient plan."""
    audio = db.session.get(AudioContent, audio_id)
    if not audio:
        return error_response('AUDIO_NOT_FOUND', "Audio content not found", 404)
    if audio.is_preview:
        return jsonify(success=True, file_url=audio.file_url, title_key=audio.title_key)

    user_id = g.get('current_user_id')
    if not user_id:
        return error_response('AUTH_REQUIRED', "Authentication required to stream this content", 401)
    grant = get_access_grant(user_id)
    if grant.plan_id is None:
        return error_response('SUBSCRIPTION_REQUIRED', "An active subscription or access key is required", 403)
    if not can_stream(grant.plan_id, audio.required_plan):
        return error_response('PLAN_UPGRADE_REQUIRED', "Your plan does not include this content", 403,
                              details={"required_plan": audio.required_plan.value, "current_plan": grant.plan_id.value})
    return jsonify(success=True, file_url=audio.file_url, title_key=audio.title_key)


@audio_bp.route('/user/my-library', methods=['GET'])
@jwt_required()
def get_my_library():
    grant = get_access_grant(current_user_id())
    has_access = grant.plan_id is not None
    library = []
    for audio in AudioContent.query.order_by(AudioContent.sort_order, AudioContent.id).all():
        accessible = can_access_in_library(audio, has_access, grant.plan_id)
        entry = audio.to_dict(include_file_url=accessible)
        entry["can_access"] = accessible
        library.append(entry)
    return jsonify(
        success=True,
        has_subscription=grant.subscription is not None,
        has_access_key=grant.access_key is not None,
        plan_id=grant.plan_id.value if grant.plan_id else None,
        expires_at=grant.expires_at.isoformat() if grant.expires_at else None,
        library=library,
    )


@audio_bp.route('/redeem-key', methods=['POST'])
@jwt_required()
def redeem_key():
    user_id = current_user_id()
    data = json_body()
    key_code = str(data.get('key_code') or '').strip().upper()
    if not key_code:
        return error_response('KEY_REQUIRED', "Access key code is required", 400)

    access_key = AudioAccessKey.query.filter_by(key_code=key_code).first()
    if not access_key:
        return error_response('KEY_NOT_FOUND', "Invalid access key", 404)
    if access_key.is_redeemed:
        return error_response('KEY_ALREADY_REDEEMED', "This access key has already been redeemed", 400)
    try:
        now = utcnow()
        access_key.is_redeemed = True
        access_key.redeemed_at = now
        access_key.redeemed_by_user_id = user_id
        access_key.expires_at = add_months(now, access_key.duration_months)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error redeeming access key {key_code}: {e}", exc_info=True)
        return error_response('REDEEM_FAILED', "Failed to redeem access key", 500)

    current_app.audit_log_service.log_action(user_id=user_id, action='redeem_access_key', target_type='audio_access_key', target_id=access_key.id)
    return jsonify(success=True, message="Access key redeemed successfully",
                   plan_id=access_key.plan_id.value, expires_at=access_key.expires_at.isoformat(),
                   duration_months=access_key.duration_months)


# --- Admin ---
@audio_bp.route('/admin', methods=['POST'])
@admin_required
def create_audio():
    data = json_body()
    if not all(data.get(f) for f in ('title_key', 'category', 'file_url', 'duration_seconds')):
        return error_response('MISSING_FIELDS', "title_key, category, file_url and duration_seconds are required", 400)
    required_plan = None
    if data.get('required_plan'):
        required_plan = parse_plan(data['required_plan'])
        if required_plan is None:
            return error_response('INVALID_PLAN', "Invalid required_plan", 400)
    try:
        audio = AudioContent(
            title_key=sanitize_input(data['title_key'], max_length=100),
            category=sanitize_input(data['category'], max_length=50),
            file_url=sanitize_input(data['file_url'], max_length=255),
            duration_seconds=int(data['duration_seconds']),
            is_preview=bool(data.get('is_preview', False)),
            required_plan=required_plan,
            sort_order=int(data.get('sort_order') or 0),
        )
        db.session.add(audio)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response('AUDIO_EXISTS', "Audio content with this title_key already exists", 400)
    except (TypeError, ValueError):
        db.session.rollback()
        return error_response('INVALID_INPUT', "duration_seconds and sort_order must be integers", 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating audio content: {e}", exc_info=True)
        return error_response('CREATE_AUDIO_FAILED', "Failed to create audio content", 500)
    return jsonify(success=True, audio=audio.to_dict()), 201


@audio_bp.route('/admin/<int:audio_id>', methods=['PUT'])
@admin_required
def update_audio(audio_id):
    audio = db.session.get(AudioContent, audio_id)
    if not audio:
        return error_response('AUDIO_NOT_FOUND', "Audio content not found", 404)
    data = json_body()
    try:
        for field, max_length in (('title_key', 100), ('category', 50), ('file_url', 255)):
            if data.get(field):
                setattr(audio, field, sanitize_input(data[field], max_length=max_length))
        if data.get('duration_seconds') is not None: audio.duration_seconds = int(data['duration_seconds'])
        if data.get('sort_order') is not None: audio.sort_order = int(data['sort_order'])
        if 'is_preview' in data: audio.is_preview = bool(data['is_preview'])
        if 'required_plan' in data:
            audio.required_plan = parse_plan(data['required_plan'])
        db.session.commit()
    except (TypeError, ValueError):
        db.session.rollback()
        return error_response('INVALID_INPUT', "duration_seconds and sort_order must be integers", 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating audio content {audio_id}: {e}", exc_info=True)
        return error_response('UPDATE_AUDIO_FAILED', "Failed to update audio content", 500)
    return jsonify(success=True, audio=audio.to_dict())


@audio_bp.route('/admin/<int:audio_id>', methods=['DELETE'])
@admin_required
def delete_audio(audio_id):
    audio = db.session.get(AudioContent, audio_id)
    if not audio:
        return error_response('AUDIO_NOT_FOUND', "Audio content not found", 404)
    try:
        db.session.delete(audio)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting audio content {audio_id}: {e}", exc_info=True)
        return error_response('DELETE_AUDIO_FAILED', "Failed to delete audio content", 500)
    return jsonify(success=True, message="Audio content deleted successfully")


@audio_bp.route('/admin/generate-keys', methods=['POST'])
@admin_required
def generate_keys():
    data = json_body()
    plan_id = parse_plan(data.get('plan_id'))
    duration_months = parse_int_arg(data.get('duration_months'), None)
    if plan_id is None or duration_months is None:
        return error_response('MISSING_FIELDS', "plan_id and duration_months are required", 400)
    count = parse_int_arg(data.get('count'), 1, maximum=MAX_KEYS_PER_REQUEST)

    keys = []
    try:
        existing = {k for (k,) in db.session.query(AudioAccessKey.key_code).all()}
        while len(keys) < count:
            key_code = generate_key_code()
            if key_code in existing:
                continue
            existing.add(key_code)
            key = AudioAccessKey(key_code=key_code, plan_id=plan_id, duration_months=duration_months)
            db.session.add(key)
            keys.append(key)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error generating access keys: {e}", exc_info=True)
        return error_response('GENERATE_KEYS_FAILED', "Failed to generate access keys", 500)

    current_app.logger.info(f"Generated {len(keys)} access keys for plan {plan_id.value}")
    current_app.audit_log_service.log_action(user_id=current_user_id(), action='generate_access_keys', target_type='audio_access_key',
                                             details=f"{len(keys)} keys, plan {plan_id.value}, {duration_months} months")
    return jsonify(success=True, keys=[k.to_dict() for k in keys]), 201


@audio_bp.route('/admin/keys', methods=['GET'])
@admin_required
def get_keys():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 50, maximum=200)
    query = AudioAccessKey.query
    redeemed = parse_bool_arg(request.args.get('redeemed'))
    if redeemed is not None:
        query = query.filter(AudioAccessKey.is_redeemed.is_(redeemed))
    pagination = query.order_by(AudioAccessKey.created_at.desc(), AudioAccessKey.id.desc())\
        .paginate(page=page, per_page=limit, error_out=False)
    keys = []
    for key in pagination.items:
        entry = key.to_dict()
        entry["redeemed_by_email"] = key.redeemed_by.email if key.redeemed_by else None
        keys.append(entry)
    return jsonify(success=True, keys=keys, pagination=pagination_dict(page, limit, pagination.total))
