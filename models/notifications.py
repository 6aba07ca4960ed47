"""
Modelos de métricas de correo

Los contadores se guardan por (métrica, período, bucket). El bucket de día,
semana o mes cambia con el calendario, así que los acumulados del período
se "reinician" solos y sobreviven reinicios del proceso.
"""

from datetime import datetime

from extensions import db


class EmailMetric(db.Model):
    __tablename__ = 'email_metrics'

    id = db.Column(db.Integer, primary_key=True)
    metric = db.Column(db.String(50), nullable=False)
    period = db.Column(db.String(10), nullable=False)  # total, day, week, month
    bucket = db.Column(db.String(20), nullable=False)  # '-', 2026-10-19, 2026-W42, 2026-10
    count = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('metric', 'period', 'bucket', name='uq_email_metrics_bucket'),
    )

    def __repr__(self):
        return f'<EmailMetric {self.metric}:{self.period}:{self.bucket}={self.count}>'


class EmailHistoryEntry(db.Model):
    __tablename__ = 'email_history'

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(50), nullable=False, index=True)
    recipient = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False)  # success, failed
    admin_user = db.Column(db.String(255))
    error = db.Column(db.String(500))
    sent_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.kind,
            'recipient': self.recipient,
            'status': self.status,
            'adminUser': self.admin_user,
            'error': self.error,
            'sentAt': self.sent_at.isoformat() if self.sent_at else None,
        }
