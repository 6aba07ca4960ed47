"""
Email Service
Envío SMTP de las notificaciones del marketplace (ventas y comisiones)
"""

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from services.base import NotificationFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpSettings:
    """Copia inmutable de la configuración SMTP.

    Se toma de ``current_app.config`` antes de repartir envíos en hilos,
    así los workers no necesitan contexto de aplicación.
    """

    host: str
    port: int
    user: str
    password: str
    from_email: str
    timeout: float = 10.0

    @classmethod
    def from_config(cls, config):
        port = config.get('SMTP_PORT', 587)
        user = config.get('MAIL_USER') or ''
        return cls(
            host=config.get('SMTP_HOST') or '',
            port=int(port) if port else 587,
            user=user,
            password=config.get('MAIL_PASSWORD') or '',
            from_email=config.get('MAIL_FROM') or user,
        )

    @property
    def is_complete(self):
        return all([self.host, self.user, self.password])


def build_message(from_email, to_email, subject, html_content, text_content=None):
    msg = MIMEMultipart('alternative')
    msg['Subject'] = subject
    msg['From'] = from_email
    msg['To'] = to_email
    if text_content:
        msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
    msg.attach(MIMEText(html_content, 'html', 'utf-8'))
    return msg


def deliver(settings, to_email, subject, html_content, text_content=None):
    """
    Envía un email o lanza NotificationFailure.

    Args:
        settings (SmtpSettings): Configuración SMTP
        to_email (str): Email destinatario
        subject (str): Asunto del email
        html_content (str): Contenido HTML del email
        text_content (str): Alternativa en texto plano
    """
    if not to_email:
        raise NotificationFailure('(sin destinatario)', 'destinatario vacío')
    if not settings.is_complete:
        logger.warning(
            f"[EMAIL] Configuración SMTP incompleta - host:{bool(settings.host)}, "
            f"user:{bool(settings.user)}, pass:{bool(settings.password)}"
        )
        raise NotificationFailure(to_email, 'configuración SMTP incompleta')

    msg = build_message(settings.from_email, to_email, subject, html_content, text_content)

    logger.info(f"[EMAIL] Conectando a {settings.host}:{settings.port} para {to_email}")
    try:
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout) as server:
            server.starttls()
            server.login(settings.user, settings.password)
            server.sendmail(settings.from_email, [to_email], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"[EMAIL] Error enviando email a {to_email}: {e}")
        raise NotificationFailure(to_email, str(e)) from e

    logger.info(f"[EMAIL] Email enviado a {to_email}")