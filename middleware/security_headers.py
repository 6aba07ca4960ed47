"""
Security Headers Middleware
===========================

Headers HTTP de seguridad para una API JSON: no hay HTML que servir, así
que la CSP cierra todo y las respuestas con datos de pagos o comisiones no
se cachean.
"""

from flask import request


def setup_security_headers(app):
    is_production = app.config.get('FLASK_ENV') == 'production'

    @app.after_request
    def add_security_headers(response):
        response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['X-Permitted-Cross-Domain-Policies'] = 'none'

        # Solo en producción con HTTPS
        if is_production and request.is_secure:
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

        if response.mimetype == 'application/json' and not response.headers.get('Cache-Control'):
            response.headers['Cache-Control'] = 'no-store, private, max-age=0'

        return response
