# backend/wsgi.py
from lastmile import create_app
from lastmile.extensions import socketio

app = create_app()


if __name__ == "__main__":
    # Serve through Socket.IO so the real-time hub shares the HTTP port
    socketio.run(app, host="0.0.0.0", port=5000, allow_unsafe_werkzeug=True)
