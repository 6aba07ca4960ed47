"""
Modelos Core: Usuario, Empresa, Vendedor, Producto
Este módulo contiene los datos de referencia del catálogo que consume el
pipeline de pagos: cuentas de usuario con su rol, empresas, vendedores,
productos y la asignación explícita producto-vendedor.
"""

import enum
import uuid
from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from extensions import db


def _uuid():
    return str(uuid.uuid4())


class AccountRole(str, enum.Enum):
    """Roles de cuenta. Se interpretan una sola vez en el borde (request/login)."""

    CLIENTE = 'cliente'
    EMPRESA = 'empresa'
    ADMIN = 'admin'
    EMBAJADOR = 'embajador'

    @classmethod
    def parse(cls, value, default=None):
        """Convierte un string arbitrario (mayúsculas, espacios) en AccountRole."""
        if isinstance(value, cls):
            return value
        if value is None:
            return default
        normalized = str(value).strip().lower()
        for role in cls:
            if role.value == normalized:
                return role
        if default is not None:
            return default
        raise ValueError(f"Rol de cuenta inválido: {value!r}")

    @property
    def display_name(self):
        return {
            AccountRole.ADMIN: 'Administrador',
            AccountRole.EMPRESA: 'Empresa',
            AccountRole.EMBAJADOR: 'Embajador',
            AccountRole.CLIENTE: 'Cliente',
        }[self]


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255))
    role = db.Column(
        db.Enum(AccountRole, name='account_role', values_callable=lambda e: [r.value for r in e]),
        nullable=False,
        default=AccountRole.CLIENTE,
    )
    company_id = db.Column(db.String(36), db.ForeignKey('empresas.id'), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relaciones
    company = db.relationship('Company', back_populates='users')

    def __repr__(self):
        return f'<User {self.email}>'

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return bool(self.password_hash) and check_password_hash(self.password_hash, password)


class Company(db.Model):
    __tablename__ = 'empresas'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True)  # destinatario de avisos de venta
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relaciones
    users = db.relationship('User', back_populates='company', lazy='dynamic')
    sellers = db.relationship(
        'Seller',
        back_populates='company',
        order_by='[Seller.created_at, Seller.id]',
    )
    products = db.relationship('Product', back_populates='company', lazy='dynamic')

    def __repr__(self):
        return f'<Company {self.name}>'


class Seller(db.Model):
    __tablename__ = 'vendedores'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    company_id = db.Column(db.String(36), db.ForeignKey('empresas.id'), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relaciones
    company = db.relationship('Company', back_populates='sellers')
    user = db.relationship('User')
    product_assignments = db.relationship('ProductSeller', back_populates='seller', cascade='all, delete-orphan')
    orders = db.relationship('Order', back_populates='seller', lazy='dynamic')

    def __repr__(self):
        return f'<Seller {self.name}>'


class Product(db.Model):
    __tablename__ = 'productos'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    category = db.Column(db.String(120))
    stock = db.Column(db.Integer, default=0)
    company_id = db.Column(db.String(36), db.ForeignKey('empresas.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relaciones
    company = db.relationship('Company', back_populates='products')
    seller_assignments = db.relationship(
        'ProductSeller',
        back_populates='product',
        order_by='[ProductSeller.created_at, ProductSeller.id]',
        cascade='all, delete-orphan',
    )

    def __repr__(self):
        return f'<Product {self.name}>'


class ProductSeller(db.Model):
    """Asignación explícita de un vendedor a un producto."""
    __tablename__ = 'producto_vendedores'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    product_id = db.Column(db.String(36), db.ForeignKey('productos.id', ondelete='CASCADE'), nullable=False, index=True)
    seller_id = db.Column(db.String(36), db.ForeignKey('vendedores.id', ondelete='CASCADE'), nullable=False)
    commission_pct = db.Column(db.Numeric(5, 2), nullable=False, default=0)  # 12.5 = 12.5%
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relaciones
    product = db.relationship('Product', back_populates='seller_assignments')
    seller = db.relationship('Seller', back_populates='product_assignments')

    def __repr__(self):
        return f'<ProductSeller {self.product_id}-{self.seller_id}>'
