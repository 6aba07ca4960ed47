"""
Modelos de Órdenes

Una Orden agrupa lo que un vendedor debe preparar para un pago confirmado.
Se crea una sola vez por (vendedor, referencia de pago) y no se modifica.
"""

import json
import uuid
from datetime import datetime

from extensions import db


orden_productos = db.Table(
    'orden_productos',
    db.Column('order_id', db.String(36), db.ForeignKey('ordenes.id', ondelete='CASCADE'), primary_key=True),
    db.Column('product_id', db.String(36), db.ForeignKey('productos.id'), primary_key=True),
)


class Order(db.Model):
    __tablename__ = 'ordenes'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_reference = db.Column(db.String(255), nullable=False, index=True)
    seller_id = db.Column(db.String(36), db.ForeignKey('vendedores.id'), nullable=False)
    buyer_user_id = db.Column(db.String(36), nullable=True)  # None = compra como invitado
    customer_json = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relaciones
    seller = db.relationship('Seller', back_populates='orders')
    products = db.relationship('Product', secondary=orden_productos, lazy='selectin')
    lines = db.relationship(
        'OrderLine',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderLine.position',
        lazy='selectin',
    )

    __table_args__ = (
        db.UniqueConstraint('seller_id', 'payment_reference', name='uq_ordenes_seller_payment'),
    )

    def __repr__(self):
        return f'<Order {self.id} seller={self.seller_id}>'

    @property
    def company(self):
        return self.seller.company if self.seller else None

    @property
    def customer_data(self):
        return json.loads(self.customer_json) if self.customer_json else {}

    @property
    def total(self):
        return sum((line.subtotal for line in self.lines), start=0)

    def to_dict(self):
        return {
            'id': self.id,
            'paymentReference': self.payment_reference,
            'sellerId': self.seller_id,
            'companyId': self.company.id if self.company else None,
            'customer': self.customer_data,
            'lines': [
                {
                    'productId': line.product_id,
                    'quantity': line.quantity,
                    'unitPrice': float(line.unit_price),
                }
                for line in self.lines
            ],
            'total': float(self.total),
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


class OrderLine(db.Model):
    __tablename__ = 'orden_lineas'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey('ordenes.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey('productos.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)  # orden original en el pago
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)

    # Relaciones
    order = db.relationship('Order', back_populates='lines')
    product = db.relationship('Product')

    def __repr__(self):
        return f'<OrderLine {self.order_id}-{self.product_id} x{self.quantity}>'

    @property
    def subtotal(self):
        return self.unit_price * self.quantity
