import logging
import os
from logging.handlers import RotatingFileHandler


LOG_FORMAT = '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
MAX_BYTES = 10485760  # 10MB


def _rotating_handler(path, level, formatter, backup_count=10):
    handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=backup_count)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def setup_logging(app):
    """
    Configura los logs de la aplicación.

    - app.log / errors.log: logger de Flask
    - security.log: eventos de seguridad y movimientos de dinero (logger 'security')
    - performance.log: requests lentos (logger 'performance')

    En testing no se escriben archivos: todo queda en los handlers por defecto
    para que pytest lo capture.
    """
    formatter = logging.Formatter(LOG_FORMAT)
    level = logging.DEBUG if app.debug else logging.INFO
    app.logger.setLevel(level)

    security_logger = logging.getLogger('security')
    security_logger.setLevel(logging.INFO)
    performance_logger = logging.getLogger('performance')
    performance_logger.setLevel(logging.WARNING)

    if app.config.get('TESTING'):
        return None

    log_dir = app.config.get('LOG_DIR') or os.path.join(app.root_path, 'logs')
    os.makedirs(log_dir, exist_ok=True)

    app.logger.addHandler(_rotating_handler(os.path.join(log_dir, 'app.log'), logging.INFO, formatter))
    app.logger.addHandler(_rotating_handler(os.path.join(log_dir, 'errors.log'), logging.ERROR, formatter))

    # Más retención para auditoría de comisiones y webhooks
    security_logger.addHandler(
        _rotating_handler(os.path.join(log_dir, 'security.log'), logging.INFO, formatter, backup_count=20)
    )
    security_logger.propagate = False

    performance_logger.addHandler(
        _rotating_handler(os.path.join(log_dir, 'performance.log'), logging.WARNING, formatter, backup_count=5)
    )
    performance_logger.propagate = False

    app.logger.info(f'Logs guardados en: {log_dir}')
    return log_dir
