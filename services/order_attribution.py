"""
Order Attribution Engine
========================
Reparte los items de un pago confirmado entre los vendedores que deben
prepararlos y persiste una Orden por vendedor.

Resolución de vendedor por producto:
1. Primera asignación explícita (por fecha de creación) cuyo vendedor
   pertenezca a la empresa del producto.
2. Si no hay, primer vendedor de la empresa por (created_at, id).
3. Si la empresa no tiene vendedores, el item se descarta con un warning.

Un producto inexistente tampoco aborta el pago: se saltea y se loguea.
"""

import json
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models.core import Product, Seller
from models.orders import Order, OrderLine
from services.base import AttributionPersistenceError, BaseService
from services.gateways.base import CustomerContact, LineItem


class OrderAttributionEngine(BaseService[Order]):
    model_class = Order

    def resolve_seller(self, product: Product) -> Optional[Seller]:
        for assignment in product.seller_assignments:
            seller = assignment.seller
            if seller is not None and seller.company_id == product.company_id:
                return seller
        if product.seller_assignments:
            self._log_warning(
                f"Producto {product.id}: ninguna asignación pertenece a la empresa {product.company_id}"
            )

        company = product.company
        if company is not None and company.sellers:
            return company.sellers[0]
        return None

    def _group_by_seller(self, line_items: List[LineItem]) -> "OrderedDict[str, Tuple[Seller, list]]":
        groups: "OrderedDict[str, Tuple[Seller, list]]" = OrderedDict()
        for position, item in enumerate(line_items):
            product = db.session.get(Product, item.product_id)
            if product is None:
                self._log_warning(f"Producto {item.product_id} no encontrado, se omite")
                continue
            if item.company_id and item.company_id != product.company_id:
                self._log_warning(
                    f"Producto {product.id}: empresa informada {item.company_id} "
                    f"distinta de la registrada {product.company_id}"
                )

            seller = self.resolve_seller(product)
            if seller is None:
                self._log_warning(f"Empresa {product.company_id} sin vendedores, se omite {product.id}")
                continue
            groups.setdefault(seller.id, (seller, []))[1].append((position, item, product))
        return groups

    def _order_for_group(self, payment_reference, payer_id, customer_json, seller, entries) -> Order:
        existing = Order.query.filter_by(seller_id=seller.id, payment_reference=payment_reference).first()
        if existing:
            self._log_info(f"Orden existente {existing.id} reutilizada para vendedor {seller.id}")
            return existing

        order = Order(
            payment_reference=payment_reference,
            seller_id=seller.id,
            buyer_user_id=payer_id,
            customer_json=customer_json,
        )
        seen = set()
        for position, item, product in entries:
            if product.id not in seen:
                order.products.append(product)
                seen.add(product.id)
            order.lines.append(OrderLine(
                product_id=product.id,
                position=position,
                quantity=item.quantity,
                unit_price=item.unit_price,
            ))
        db.session.add(order)
        return order

    def attribute(
        self,
        payment_reference: str,
        payer_id: Optional[str],
        line_items: List[LineItem],
        customer: CustomerContact,
    ) -> List[Order]:
        """Crea (o reutiliza) una Orden por vendedor para el pago."""
        customer_json = json.dumps(customer.to_dict(), ensure_ascii=False)

        for attempt in range(2):
            try:
                groups = self._group_by_seller(line_items)
                orders = [
                    self._order_for_group(payment_reference, payer_id, customer_json, seller, entries)
                    for seller, entries in groups.values()
                ]
                db.session.commit()
            except IntegrityError as e:
                # Otra confirmación del mismo pago creó la orden primero
                db.session.rollback()
                if attempt == 0:
                    self._log_warning(f"Orden concurrente para {payment_reference}, reintentando")
                    continue
                raise AttributionPersistenceError(payment_reference, str(e)) from e
            except SQLAlchemyError as e:
                db.session.rollback()
                self._log_error(f"Error persistiendo órdenes de {payment_reference}: {e}")
                raise AttributionPersistenceError(payment_reference, str(e)) from e

            self._log_info(
                f"Pago {payment_reference}: {len(orders)} orden(es) para {len(line_items)} item(s)"
            )
            return orders

    def orders_for_payment(self, payment_reference: str) -> List[Order]:
        return Order.query.filter_by(payment_reference=payment_reference).order_by(Order.created_at).all()

    def orders_for_buyer(self, user_id: str) -> List[Order]:
        return (
            Order.query
            .filter_by(buyer_user_id=user_id)
            .order_by(Order.created_at.desc(), Order.id)
            .all()
        )

    @staticmethod
    def company_summaries(orders: List[Order]) -> Dict[str, dict]:
        """Agrupa las órdenes por empresa: productos, total y datos de contacto."""
        summaries: Dict[str, dict] = OrderedDict()
        for order in orders:
            company = order.company
            if company is None:
                continue
            summary = summaries.setdefault(company.id, {
                'company': company,
                'products': [],
                'total': 0,
            })
            for line in order.lines:
                summary['products'].append({
                    'name': line.product.name if line.product else line.product_id,
                    'quantity': line.quantity,
                    'price': float(line.unit_price),
                    'subtotal': float(line.subtotal),
                })
                summary['total'] += line.subtotal
        return summaries
