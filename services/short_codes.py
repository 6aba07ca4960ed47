"""
Short Code Service
==================
Códigos cortos de 6 caracteres (A-Z0-9) para enlaces de referido y
carritos compartidos. Ambos tipos comparten un único espacio de códigos:
al generar se verifica que el código no exista en ninguna de las dos tablas.
"""

import re
import secrets
import string
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from extensions import db
from models.core import User
from models.referrals import ReferralShortCode, SharedCartLink
from services.base import (
    BaseService,
    NotFoundException,
    ServiceException,
    ValidationException,
)


SHORT_CODE_ALPHABET = string.ascii_uppercase + string.digits
SHORT_CODE_LENGTH = 6
MAX_GENERATION_ATTEMPTS = 10
CUSTOM_CODE_PATTERN = re.compile(r'^[A-Z0-9]{4,16}$')


def generate_short_code(length: int = SHORT_CODE_LENGTH) -> str:
    return ''.join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))


def code_in_use(code: str) -> bool:
    """True si el código ya existe como referido o como carrito compartido."""
    return (
        ReferralShortCode.query.filter_by(short_code=code).first() is not None
        or SharedCartLink.query.filter_by(short_code=code).first() is not None
    )


def normalize_code(code: str) -> str:
    return (code or '').strip().upper()


class ShortCodeService(BaseService[ReferralShortCode]):
    model_class = ReferralShortCode

    def __init__(self, generator=generate_short_code, max_attempts: int = MAX_GENERATION_ATTEMPTS):
        super().__init__()
        self.generator = generator
        self.max_attempts = max_attempts

    def _require_user(self, user_id: str) -> User:
        user = db.session.get(User, user_id) if user_id else None
        if not user:
            raise NotFoundException('Usuario', user_id)
        return user

    def _persist_with_fresh_code(self, build, find_existing=None):
        """Genera códigos hasta que uno no colisione, incluso ante inserts concurrentes.

        ``find_existing`` devuelve la fila que ganó la carrera cuando la
        colisión no es del código sino de otra restricción única (p. ej. user_id).
        """
        for attempt in range(1, self.max_attempts + 1):
            code = self.generator()
            if code_in_use(code):
                self._log_debug(f"Colisión de código {code} (intento {attempt})")
                continue
            instance = build(code)
            db.session.add(instance)
            try:
                db.session.commit()
                return instance
            except IntegrityError:
                db.session.rollback()
                if find_existing:
                    existing = find_existing()
                    if existing:
                        return existing
                self._log_warning(f"Código {code} tomado concurrentemente (intento {attempt})")
        raise ServiceException(
            f"No se pudo generar un código único tras {self.max_attempts} intentos",
            code='SHORT_CODE_EXHAUSTED',
        )

    # ===== Códigos de referido =====

    def get_for_user(self, user_id: str) -> Optional[ReferralShortCode]:
        return ReferralShortCode.query.filter_by(user_id=user_id).first()

    def get_or_create(self, user_id: str) -> str:
        """Devuelve el código del usuario y lo crea la primera vez."""
        existing = self.get_for_user(user_id)
        if existing:
            return existing.short_code

        self._require_user(user_id)
        try:
            entity = self._persist_with_fresh_code(
                lambda code: ReferralShortCode(short_code=code, user_id=user_id),
                find_existing=lambda: self.get_for_user(user_id),
            )
        except ServiceException:
            # La unicidad de user_id pudo ganar la carrera
            existing = self.get_for_user(user_id)
            if existing:
                return existing.short_code
            raise
        self._log_info(f"Nuevo código corto {entity.short_code} para {user_id}")
        return entity.short_code

    def create_specific(self, user_id: str, short_code: str) -> str:
        """Asigna un código elegido. Si el usuario ya tiene uno, se devuelve ese."""
        code = normalize_code(short_code)
        if not CUSTOM_CODE_PATTERN.match(code):
            raise ValidationException('El código debe tener entre 4 y 16 caracteres A-Z o 0-9')

        self._require_user(user_id)
        existing = self.get_for_user(user_id)
        if existing:
            return existing.short_code
        if code_in_use(code):
            raise ValidationException(f"El código {code} ya está en uso", details={'shortCode': code})

        db.session.add(ReferralShortCode(short_code=code, user_id=user_id))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self.get_for_user(user_id)
            if existing:
                return existing.short_code
            raise ValidationException(f"El código {code} ya está en uso", details={'shortCode': code})
        self._log_info(f"Código corto específico {code} creado para {user_id}")
        return code

    def resolve_referral_code(self, code: str) -> Dict[str, str]:
        entity = ReferralShortCode.query.filter_by(short_code=normalize_code(code)).first()
        if not entity:
            raise NotFoundException('Código corto', code)
        return {'userId': entity.user_id}

    # ===== Carritos compartidos =====

    def create_shared_cart_link(self, user_id: str, cart_data: List[Any], short_code: Optional[str] = None) -> str:
        if not isinstance(cart_data, list):
            raise ValidationException('cartData debe ser una lista')
        self._require_user(user_id)

        if short_code:
            code = normalize_code(short_code)
            if not CUSTOM_CODE_PATTERN.match(code):
                raise ValidationException('El código debe tener entre 4 y 16 caracteres A-Z o 0-9')
            if code_in_use(code):
                raise ValidationException(f"El código {code} ya está en uso", details={'shortCode': code})
            link = SharedCartLink(short_code=code, user_id=user_id, cart_data=cart_data)
            db.session.add(link)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                raise ValidationException(f"El código {code} ya está en uso", details={'shortCode': code})
        else:
            link = self._persist_with_fresh_code(
                lambda code: SharedCartLink(short_code=code, user_id=user_id, cart_data=cart_data)
            )

        self._log_info(f"Carrito compartido {link.short_code} creado ({len(cart_data)} items)")
        return link.short_code

    def resolve_shared_cart_link(self, code: str) -> Dict[str, Any]:
        link = SharedCartLink.query.filter_by(short_code=normalize_code(code)).first()
        if not link:
            raise NotFoundException('Carrito compartido', code)
        return {'userId': link.user_id, 'cartData': link.cart_data, 'type': link.type}
