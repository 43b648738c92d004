"""
Read API
========
JSON and Socket.IO surface over a PredictionService.

    GET /api/prediction/<asset>?horizon=1|SHORT|MEDIUM|LONG
    GET /api/volatilities
    GET /api/health
    GET /api/status

A `volatility_update` event carrying get_all_volatilities() is pushed to
connected clients after every update cycle.
"""

from datetime import datetime
import logging
import threading

from flask import Flask, jsonify, request
from flask_socketio import SocketIO

from .exceptions import UnknownAssetError

logger = logging.getLogger(__name__)


def _parse_horizon(raw: str):
    try:
        return int(raw)
    except ValueError:
        return raw


def create_app(service):
    """Build the Flask app and SocketIO server bound to a service."""
    app = Flask(__name__)
    socketio = SocketIO(app, cors_allowed_origins="*")

    # ═══════════════════════════════════════════════════════════════
    # ROUTES
    # ═══════════════════════════════════════════════════════════════

    @app.route('/api/prediction/<asset>')
    def get_prediction(asset):
        """Risk-adjusted recommendation for one asset."""
        horizon = _parse_horizon(request.args.get('horizon', '1'))
        try:
            return jsonify(service.get_prediction(asset, horizon))
        except UnknownAssetError as e:
            return jsonify({'error': str(e)}), 404
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
        except Exception as e:
            logger.error(f"Prediction request failed for {asset}: {e}")
            return jsonify({'error': str(e)}), 500

    @app.route('/api/volatilities')
    def get_volatilities():
        try:
            return jsonify(service.get_all_volatilities())
        except Exception as e:
            logger.error(f"Volatility request failed: {e}")
            return jsonify({'error': str(e)}), 500

    @app.route('/api/health')
    def health_check():
        """Health check endpoint."""
        try:
            health = service.get_service_health()
            health['timestamp'] = datetime.now().isoformat()
            return jsonify(health)
        except Exception as e:
            return jsonify({
                'status': 'unhealthy',
                'error': str(e),
                'timestamp': datetime.now().isoformat()
            }), 500

    @app.route('/api/status')
    def get_status():
        try:
            return jsonify(service.get_status())
        except Exception as e:
            logger.error(f"Status request failed: {e}")
            return jsonify({'error': str(e)}), 500

    # ═══════════════════════════════════════════════════════════════
    # SOCKET.IO EVENTS
    # ═══════════════════════════════════════════════════════════════

    @socketio.on('connect')
    def handle_connect():
        """Send the current volatilities to a new client."""
        logger.info("Client connected")
        socketio.emit('volatility_update', service.get_all_volatilities())

    @socketio.on('request_update')
    def handle_update_request():
        socketio.emit('volatility_update', service.get_all_volatilities())

    def push_update(data):
        socketio.emit('volatility_update', data)

    service.subscribe(push_update)

    return app, socketio


def main():
    """Run the service loop in the background and serve the read API."""
    import argparse

    from .config import SystemConfig, DataMode
    from .orchestrator import PredictionService

    parser = argparse.ArgumentParser(description='Market Signal Engine API')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--live', action='store_true', help='Use live yfinance data')
    parser.add_argument('--host', type=str, default='0.0.0.0')
    parser.add_argument('--port', type=int, default=5000)

    args = parser.parse_args()

    config = SystemConfig.load(args.config) if args.config else SystemConfig()
    if args.live:
        config.data.mode = DataMode.LIVE

    logging.basicConfig(
        level=getattr(logging, config.monitoring.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    service = PredictionService(config)
    app, socketio = create_app(service)

    try:
        service.initialize()

        # Start background update loop
        updater_thread = threading.Thread(target=service.run, daemon=True)
        updater_thread.start()

        socketio.run(app, host=args.host, port=args.port, debug=False, allow_unsafe_werkzeug=True)
    finally:
        service.shutdown()


if __name__ == '__main__':
    main()
