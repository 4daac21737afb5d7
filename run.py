import logging

from chatApp import create_app
from config import Config

if __name__ == '__main__':
    logging.basicConfig(level=Config.LOG_LEVEL)
    app = create_app()
    socketio = app.extensions['socketio']
    logging.getLogger(__name__).info(f"Walkie Talkie server running on port {app.config['PORT']}")
    socketio.run(app, host=app.config['HOST'], port=app.config['PORT'], allow_unsafe_werkzeug=True)
