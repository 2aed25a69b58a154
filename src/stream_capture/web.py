"""Flask status API for Stream Capture."""

import logging
from datetime import datetime
from flask import Flask, jsonify, request
from flask_cors import CORS

from .models import get_session, CaptureLog

# Initialize Flask app
app = Flask(__name__)
CORS(app)

# Global reference to scheduler (set by app.py)
_scheduler = None

def set_scheduler(scheduler):
    """Set the scheduler reference so the API can report on it."""
    global _scheduler
    _scheduler = scheduler

logger = logging.getLogger(__name__)

@app.route('/api/status')
def get_status():
    """Get scheduler status, the capture queue and active captures."""
    if _scheduler is None:
        return jsonify({'running': False, 'queue': [], 'active': [], 'time': datetime.now().isoformat()})

    status = _scheduler.get_status()
    status['time'] = datetime.now().isoformat()
    return jsonify(status)

@app.route('/api/recordings')
def get_recordings():
    """Get every show currently matched by a keyword rule."""
    if _scheduler is None:
        return jsonify([])
    return jsonify(_scheduler.get_recordings())

@app.route('/api/channels')
def get_channels():
    """Get channel history."""
    if _scheduler is None:
        return jsonify([])

    table = _scheduler.history.snapshot()
    return jsonify([entry.to_dict() for _, entry in sorted(table.items())])

@app.route('/api/history')
def get_history():
    """Get recent capture sessions."""
    limit = request.args.get('limit', 50, type=int)
    with get_session() as session:
        logs = session.query(CaptureLog).order_by(CaptureLog.id.desc()).limit(limit).all()
        return jsonify([log.to_dict() for log in logs])
