"""
Base Service Class
==================
Clase base para todos los servicios del sistema.
Proporciona la jerarquía de excepciones de servicio y helpers comunes
(sesión, logging) que comparten ledger, atribución y orquestador.
"""

from typing import TypeVar, Generic, Type, Optional, Any
from flask import current_app
from extensions import db
from sqlalchemy.exc import SQLAlchemyError


T = TypeVar('T')


class ServiceException(Exception):
    """Excepción base para errores de servicios"""
    def __init__(self, message: str, code: str = 'SERVICE_ERROR', details: Optional[dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(ServiceException):
    """Excepción para errores de validación"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, code='VALIDATION_ERROR', details=details)


class NotFoundException(ServiceException):
    """Excepción cuando no se encuentra un recurso"""
    def __init__(self, resource: str, identifier: Any):
        message = f"{resource} con id {identifier} no encontrado"
        super().__init__(message, code='NOT_FOUND', details={'resource': resource, 'id': identifier})


class PermissionDeniedException(ServiceException):
    """Excepción cuando el usuario no tiene permisos"""
    def __init__(self, action: str, resource: str):
        message = f"Permiso denegado para {action} en {resource}"
        super().__init__(message, code='PERMISSION_DENIED', details={'action': action, 'resource': resource})


# ===== Pasarelas de pago =====

class GatewayError(ServiceException):
    """Error base de una pasarela de pago"""
    def __init__(self, message: str, code: str = 'GATEWAY_ERROR', provider: str = '', details: Optional[dict] = None):
        details = dict(details or {})
        details.setdefault('provider', provider)
        self.provider = provider
        super().__init__(message, code=code, details=details)


class GatewayRejected(GatewayError):
    """La tarjeta o el procesador rechazó el pago. Terminal, no se reintenta."""
    def __init__(self, message: str, provider: str = '', details: Optional[dict] = None):
        super().__init__(message, code='GATEWAY_REJECTED', provider=provider, details=details)


class GatewayUnreachable(GatewayError):
    """Error de red o 5xx del procesador. Se puede reintentar."""
    def __init__(self, message: str, provider: str = '', details: Optional[dict] = None):
        super().__init__(message, code='GATEWAY_UNREACHABLE', provider=provider, details=details)


class GatewayAuthError(GatewayError):
    """Credenciales mal configuradas. Fatal, nunca se reintenta."""
    def __init__(self, message: str, provider: str = '', details: Optional[dict] = None):
        super().__init__(message, code='GATEWAY_AUTH_ERROR', provider=provider, details=details)


class PaymentNotCompleted(ServiceException):
    """El pago existe pero no está aprobado"""
    def __init__(self, payment_reference: str, status: str):
        super().__init__(
            'El pago no fue completado',
            code='PAYMENT_NOT_COMPLETED',
            details={'payment_reference': payment_reference, 'status': status},
        )


# ===== Pipeline de confirmación =====

class AttributionPersistenceError(ServiceException):
    """La base de datos no pudo persistir las órdenes de un pago"""
    def __init__(self, payment_reference: str, cause: str = ''):
        super().__init__(
            f"No se pudieron guardar las órdenes del pago {payment_reference}",
            code='ATTRIBUTION_PERSISTENCE_ERROR',
            details={'payment_reference': payment_reference, 'cause': cause},
        )


class ReferrerNotFound(ServiceException):
    def __init__(self, referrer_id: str):
        super().__init__(
            f"Referidor {referrer_id} no encontrado",
            code='REFERRER_NOT_FOUND',
            details={'referrer_id': referrer_id},
        )


class DuplicateCommission(ServiceException):
    def __init__(self, referrer_id: str, payment_reference: str):
        super().__init__(
            f"Ya existe una comisión para {referrer_id} en el pago {payment_reference}",
            code='DUPLICATE_COMMISSION',
            details={'referrer_id': referrer_id, 'payment_reference': payment_reference},
        )


class NotificationFailure(ServiceException):
    def __init__(self, recipient: str, cause: str = ''):
        super().__init__(
            f"No se pudo notificar a {recipient}",
            code='NOTIFICATION_FAILURE',
            details={'recipient': recipient, 'cause': cause},
        )


class BaseService(Generic[T]):
    """
    Servicio base con operaciones comunes.

    Los servicios específicos deben heredar de esta clase y definir:
    - model_class: La clase del modelo SQLAlchemy
    """

    model_class: Type[T] = None

    def __init__(self):
        if self.model_class is None:
            raise NotImplementedError("model_class debe estar definido en la subclase")

    def get_by_id(self, id: str) -> Optional[T]:
        """Obtiene un registro por ID"""
        return db.session.get(self.model_class, id)

    def get_by_id_or_fail(self, id: str) -> T:
        """Obtiene un registro por ID o lanza excepción"""
        instance = self.get_by_id(id)
        if not instance:
            raise NotFoundException(self.model_class.__name__, id)
        return instance

    # ===== Transaction Management =====

    def commit(self):
        """Commit explícito de la sesión"""
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise ServiceException(f"Error al guardar cambios: {str(e)}")

    def rollback(self):
        db.session.rollback()

    # ===== Logging Helpers =====

    def _log_info(self, message: str):
        if current_app:
            current_app.logger.info(f"[{self.__class__.__name__}] {message}")

    def _log_error(self, message: str):
        if current_app:
            current_app.logger.error(f"[{self.__class__.__name__}] {message}")

    def _log_warning(self, message: str):
        if current_app:
            current_app.logger.warning(f"[{self.__class__.__name__}] {message}")

    def _log_debug(self, message: str):
        if current_app:
            current_app.logger.debug(f"[{self.__class__.__name__}] {message}")
