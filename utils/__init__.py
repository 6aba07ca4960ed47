"""
Utils package
"""

import re
from decimal import Decimal


EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


def formatear_moneda(cantidad):
    """Formatea cantidad como moneda con dos decimales: 1234.5 -> $1,234.50"""
    if cantidad is None:
        return "$0.00"
    return f"${Decimal(str(cantidad)):,.2f}"


def validar_email(email):
    """Validación básica de email"""
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def safe_int(value, default=None):
    """Convierte a int de forma segura"""
    try:
        if value is None or value == '':
            return default
        return int(value)
    except (ValueError, TypeError):
        return default
