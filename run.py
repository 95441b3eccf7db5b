"""
Application entry point
Starts the capture API; WAIT_FOR_MODELS=1 blocks until the face models have loaded
"""
import os

from app import create_app
from app import globals as app_globals

app = create_app()


def _env_flag(name, default='False'):
    return os.getenv(name, default).lower() in ('true', '1', 'yes')


if __name__ == '__main__':
    host = os.getenv('FLASK_HOST', '0.0.0.0')
    port = int(os.getenv('FLASK_PORT', 5000))
    debug = _env_flag('FLASK_DEBUG')

    if _env_flag('WAIT_FOR_MODELS'):
        app.logger.info("⏳ Waiting for face models before serving")
        if not app_globals.model_service.wait_ready(timeout=120):
            status = app_globals.model_service.get_status()
            app.logger.error(f"❌ Face models not ready: {status['error'] or status['status']}")

    app.logger.info(f"🚀 Capture API on http://{host}:{port} (debug={debug})")

    # threaded: one request thread per SSE client; the reloader would load the models twice
    app.run(host=host, port=port, debug=debug, threaded=True, use_reloader=False)
