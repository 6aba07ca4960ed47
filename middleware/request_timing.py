import logging
import time

from flask import g, request


logger = logging.getLogger('performance')

# Las rutas de pago esperan a la pasarela: su umbral es más alto
SLOW_REQUEST_SECONDS = 1.0
SLOW_GATEWAY_REQUEST_SECONDS = 5.0


def _threshold(path):
    return SLOW_GATEWAY_REQUEST_SECONDS if path.startswith('/payments') else SLOW_REQUEST_SECONDS


def setup_request_timing(app):
    """Mide cada request, loguea los lentos y agrega el header X-Response-Time."""

    @app.before_request
    def start_timer():
        g.start_time = time.perf_counter()

    @app.after_request
    def add_timing(response):
        started = getattr(g, 'start_time', None)
        if started is None:
            return response

        elapsed = time.perf_counter() - started
        if elapsed > _threshold(request.path):
            logger.warning(
                f'Slow request: {request.method} {request.path} - '
                f'{elapsed:.2f}s - Status: {response.status_code}'
            )
        response.headers['X-Response-Time'] = f'{elapsed:.3f}s'
        return response
