import logging
import os
import time
from functools import wraps

from flask import request, jsonify, session, send_from_directory
from werkzeug.utils import secure_filename

from errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

UPLOAD_FIELD = 'chatFile'


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not session.get('user'):
            return jsonify({"success": False, "message": "Unauthorized"}), 401
        return view(*args, **kwargs)
    return wrapped


def store_upload(upload_folder, file):
    """Write an uploaded file to disk and return its {name, path, size, mimetype}."""
    original = file.filename
    safe_name = secure_filename(original) or 'file'
    stored_name = f"{UPLOAD_FIELD}-{int(time.time() * 1000)}-{safe_name}"
    full_path = os.path.join(upload_folder, stored_name)
    file.save(full_path)
    return {
        "name": original,
        "path": f"/uploads/{stored_name}",
        "size": os.path.getsize(full_path),
        "mimetype": file.mimetype,
    }


def register_chat_routes(app, engine):

    # Fetch chat history of a room
    @app.route('/messages', methods=['GET'])
    @login_required
    def get_messages():
        room = request.args.get('room') or engine.default_room
        return jsonify({"success": True, "room": room, "messages": engine.history(room)})

    # Clear chat history (every room)
    @app.route('/clearMessages', methods=['POST'])
    @login_required
    def clear_messages():
        data = request.get_json(silent=True) or {}
        try:
            engine.clear_history(data.get('room'))
            return jsonify({"success": True, "message": "Chat history cleared."})
        except ValidationError as e:
            return jsonify({"success": False, "message": e.message}), 400
        except PersistenceError as e:
            logger.error(f"Error clearing messages: {e.message}")
            return jsonify({"success": False, "message": "Failed to clear chat history."}), 500

    @app.route('/upload', methods=['POST'])
    @login_required
    def upload():
        file = request.files.get(UPLOAD_FIELD)
        if file is None or not file.filename:
            return jsonify({"success": False, "message": "No file uploaded."}), 400

        username = session['user']['username']
        room = request.form.get('room') or engine.default_room
        color = request.form.get('color')

        try:
            file_info = store_upload(app.config['UPLOAD_FOLDER'], file)
        except OSError as e:
            logger.error(f"Could not store upload from {username}: {str(e)}")
            return jsonify({"success": False, "message": "Could not store file."}), 500

        try:
            message, persisted = engine.publish_upload(username, file_info, room=room, color=color)
        except ValidationError as e:
            logger.warning(f"Rejected upload from {username}: {e.message}")
            os.remove(os.path.join(app.config['UPLOAD_FOLDER'], os.path.basename(file_info['path'])))
            return jsonify({"success": False, "message": e.message}), 400

        logger.info(f"{username} shared {file_info['name']} in {message['room']}")
        return jsonify({
            "success": True,
            "message": "File uploaded and broadcasted successfully.",
            "messageId": message['messageId'],
            "persisted": persisted,
        })

    @app.route('/uploads/<path:filename>', methods=['GET'])
    def uploaded_file(filename):
        return send_from_directory(os.path.abspath(app.config['UPLOAD_FOLDER']), filename)
