from flask import request, jsonify, session
from werkzeug.security import generate_password_hash, check_password_hash
from chatApp import db, User
import logging

logger = logging.getLogger(__name__)


def register_auth_routes(app):

    @app.route('/register', methods=['POST'])
    def register():
        try:
            if not request.is_json:
                return jsonify({"success": False, "message": "Request must be JSON"}), 400

            data = request.get_json()
            if not isinstance(data, dict):
                return jsonify({"success": False, "message": "Username and password required."}), 400

            username = data.get('username')
            password = data.get('password')
            if not username or not password:
                return jsonify({"success": False, "message": "Username and password required."}), 400
            if not isinstance(username, str) or not isinstance(password, str) or not username.strip():
                return jsonify({"success": False, "message": "Username and password must be text."}), 400

            username = username.strip()

            # Check if user already exists
            if User.query.filter_by(username=username).first():
                return jsonify({"success": False, "message": "Username already exists."})

            new_user = User(username=username, password_hash=generate_password_hash(password))
            db.session.add(new_user)
            db.session.commit()
            logger.info(f"Registered user {username}")
            return jsonify({"success": True, "message": "Registration successful. Please log in."})

        except Exception as e:
            db.session.rollback()
            logger.error(f"Registration error: {str(e)}")
            return jsonify({"success": False, "message": "Server error during registration."}), 500

    @app.route('/login', methods=['POST'])
    def login():
        try:
            if not request.is_json:
                return jsonify({"success": False, "message": "Request must be JSON"}), 400

            data = request.get_json()
            if not isinstance(data, dict):
                return jsonify({"success": False, "message": "Username and password required."}), 400

            username = data.get('username')
            password = data.get('password')
            if not username or not password:
                return jsonify({"success": False, "message": "Username and password required."}), 400
            if not isinstance(username, str) or not isinstance(password, str) or not username.strip():
                return jsonify({"success": False, "message": "Username and password must be text."}), 400

            user = User.query.filter_by(username=username.strip()).first()
            if not user or not check_password_hash(user.password_hash, password):
                return jsonify({"success": False, "message": "Invalid username or password."})

            session['user'] = {"username": user.username}
            return jsonify({"success": True, "message": "Login successful."})

        except Exception as e:
            logger.error(f"Login error: {str(e)}")
            return jsonify({"success": False, "message": "Server error during login."}), 500

    @app.route('/session', methods=['GET'])
    def current_session():
        user = session.get('user')
        if user:
            return jsonify({"loggedIn": True, "username": user['username']})
        return jsonify({"loggedIn": False})

    @app.route('/logout', methods=['POST'])
    def logout():
        session.clear()
        return jsonify({"success": True, "message": "Logout successful."})
