# vmcandles/uploads/routes.py
import os
import uuid

from flask import Blueprint, request, jsonify, current_app
from werkzeug.utils import secure_filename

from ..utils import error_response, allowed_file, generate_slug, admin_required, current_user_id

uploads_bp = Blueprint('uploads_bp', __name__, url_prefix='/api/upload')


def get_file_extension(filename):
    return filename.rsplit('.', 1)[1].lower() if '.' in filename else ''

def _save_upload(subfolder, allowed_extensions):
    upload_file = request.files.get('file')
    if upload_file is None or not upload_file.filename:
        return error_response('NO_FILE', "No file uploaded", 400)
    if not allowed_file(upload_file.filename, allowed_extensions):
        return error_response('INVALID_FILE_TYPE', f"Allowed file types: {', '.join(sorted(allowed_extensions))}", 400)

    base_name = generate_slug(os.path.splitext(upload_file.filename)[0]) or subfolder
    filename = secure_filename(f"{uuid.uuid4().hex[:8]}_{base_name}.{get_file_extension(upload_file.filename)}")
    target_dir = os.path.join(current_app.config['UPLOAD_FOLDER'], subfolder)
    try:
        os.makedirs(target_dir, exist_ok=True)
        upload_file.save(os.path.join(target_dir, filename))
    except OSError as e:
        current_app.logger.error(f"Failed to store upload {filename}: {e}", exc_info=True)
        return error_response('UPLOAD_FAILED', "Failed to store the uploaded file", 500)

    url = f"/uploads/{subfolder}/{filename}"
    current_app.audit_log_service.log_action(user_id=current_user_id(), action=f'upload_{subfolder}', target_type='file', details=url)
    return jsonify(success=True, url=url, filename=filename), 201


@uploads_bp.route('/image', methods=['POST'])
@admin_required
def upload_image():
    return _save_upload('images', current_app.config['ALLOWED_IMAGE_EXTENSIONS'])


@uploads_bp.route('/audio', methods=['POST'])
@admin_required
def upload_audio():
    return _save_upload('audio', current_app.config['ALLOWED_AUDIO_EXTENSIONS'])
