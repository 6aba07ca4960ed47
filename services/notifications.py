"""
Notification Dispatcher
=======================
Envíos best-effort posteriores a un pago: aviso de venta a cada empresa y
aviso de comisión al embajador. Los envíos corren en paralelo, cada falla
queda aislada y nada de esto puede revertir el estado financiero.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional

from flask import current_app

from services.base import NotificationFailure
from services.email_metrics import KIND_COMMISSION, KIND_COMPANY_ORDER
from services.email_service import SmtpSettings, deliver
from services.email_templates import commission_earned_email, company_order_email

logger = logging.getLogger(__name__)


@dataclass
class NotificationJob:
    kind: str
    recipient: str
    send: Callable[[], None]


@dataclass
class NotificationOutcome:
    kind: str
    recipient: str
    success: bool
    error: Optional[str] = None

    def to_dict(self):
        return {
            'type': self.kind,
            'recipient': self.recipient,
            'success': self.success,
            'error': self.error,
        }


class NotificationDispatcher:
    """Envía emails con una copia de la configuración SMTP tomada al crear el dispatcher."""

    def __init__(self, settings: Optional[SmtpSettings] = None, max_workers: Optional[int] = None, mailer=None):
        config = current_app.config if (settings is None or max_workers is None) else {}
        self.settings = settings or SmtpSettings.from_config(config)
        self.max_workers = max_workers or int(config.get('NOTIFICATION_MAX_WORKERS', 4))
        self.mailer = mailer or deliver

    # ===== Envíos individuales =====

    def send_mail(self, to: str, subject: str, html: str, text: Optional[str] = None):
        self.mailer(self.settings, to, subject, html, text)

    def send_company_order_notification(self, company_email: str, company_name: str, order_details: dict):
        subject, html, text = company_order_email(company_name, order_details)
        self.send_mail(company_email, subject, html, text)

    def send_commission_earned(self, referrer_email, referrer_name, total_amount, commission, referred_name):
        subject, html, text = commission_earned_email(referrer_name, total_amount, commission, referred_name)
        self.send_mail(referrer_email, subject, html, text)

    # ===== Jobs para el fan-out =====

    def company_order_job(self, company_email, company_name, order_details) -> NotificationJob:
        return NotificationJob(
            kind=KIND_COMPANY_ORDER,
            recipient=company_email,
            send=lambda: self.send_company_order_notification(company_email, company_name, order_details),
        )

    def commission_job(self, referrer_email, referrer_name, total_amount, commission, referred_name) -> NotificationJob:
        return NotificationJob(
            kind=KIND_COMMISSION,
            recipient=referrer_email,
            send=lambda: self.send_commission_earned(
                referrer_email, referrer_name, total_amount, commission, referred_name
            ),
        )

    @staticmethod
    def _run(job: NotificationJob) -> NotificationOutcome:
        try:
            job.send()
        except NotificationFailure as e:
            logger.warning(f"[NOTIFY] No se pudo enviar {job.kind} a {job.recipient}: {e.details.get('cause') or e}")
            return NotificationOutcome(job.kind, job.recipient, False, e.details.get('cause') or str(e))
        except Exception as e:
            logger.exception(f"[NOTIFY] Error inesperado enviando {job.kind} a {job.recipient}")
            return NotificationOutcome(job.kind, job.recipient, False, str(e))
        logger.info(f"[NOTIFY] {job.kind} enviado a {job.recipient}")
        return NotificationOutcome(job.kind, job.recipient, True)

    def dispatch_all(self, jobs: List[NotificationJob]) -> List[NotificationOutcome]:
        """Ejecuta todos los jobs en paralelo y espera todos los resultados. Nunca lanza."""
        jobs = list(jobs)
        if not jobs:
            return []
        workers = max(1, min(self.max_workers, len(jobs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='notify') as pool:
            outcomes = list(pool.map(self._run, jobs))

        failed = [o for o in outcomes if not o.success]
        if failed:
            logger.warning(f"[NOTIFY] {len(failed)}/{len(outcomes)} notificaciones fallaron")
        return outcomes
