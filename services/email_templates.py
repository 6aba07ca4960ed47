"""Asuntos y cuerpos (HTML + texto) de los emails transaccionales."""

from datetime import datetime
from html import escape

from utils import formatear_moneda


def _money(value):
    return formatear_moneda(value or 0)


def company_order_email(company_name, order_details):
    """Aviso de venta a la empresa. ``order_details`` usa las claves del storefront."""
    order_id = order_details.get('orderId', '')
    subject = f"Nueva compra de tus productos - Pedido #{order_id}"

    products = order_details.get('products') or []
    rows_html = "".join(
        f"<li><strong>{escape(str(p.get('name', '')))}</strong> - Cantidad: {p.get('quantity')}"
        f" - {_money(p.get('price'))}</li>"
        for p in products
    )
    rows_text = "\n".join(
        f"- {p.get('name', '')} x{p.get('quantity')} ({_money(p.get('price'))})" for p in products
    )

    phone = order_details.get('customerPhone')
    html = f"""
    <h2>Nueva Compra Recibida</h2>
    <p>Hola {escape(company_name or 'Empresa')},</p>
    <p>Has recibido una nueva venta.</p>
    <h4>Datos del cliente</h4>
    <p><strong>Nombre:</strong> {escape(order_details.get('customerName') or '')}</p>
    <p><strong>Email:</strong> {escape(order_details.get('customerEmail') or '')}</p>
    <p><strong>Dirección:</strong> {escape(order_details.get('customerAddress') or '')}</p>
    <p><strong>Ciudad:</strong> {escape(order_details.get('customerCity') or '')}</p>
    {f"<p><strong>Teléfono:</strong> {escape(phone)}</p>" if phone else ""}
    <h4>Productos vendidos</h4>
    <ul>{rows_html}</ul>
    <h3>Total de la venta: {_money(order_details.get('totalAmount'))}</h3>
    """

    text = (
        f"Hola {company_name or 'Empresa'},\n\n"
        f"Has recibido una nueva venta (pedido {order_id}).\n\n"
        f"Cliente: {order_details.get('customerName') or ''} <{order_details.get('customerEmail') or ''}>\n"
        f"Dirección: {order_details.get('customerAddress') or ''}, {order_details.get('customerCity') or ''}\n"
        f"Teléfono: {phone or 'No especificado'}\n\n"
        f"Productos:\n{rows_text}\n\n"
        f"Total: {_money(order_details.get('totalAmount'))}\n"
    )
    return subject, html, text


def commission_earned_email(referrer_name, total_amount, commission, referred_name, when=None):
    when = (when or datetime.utcnow()).strftime('%d/%m/%Y')
    name = referrer_name or 'Embajador'
    subject = "Nueva comision ganada - Programa de referidos"

    html = f"""
    <h2>Nueva Comision Ganada</h2>
    <p><strong>¡Felicidades {escape(name)}!</strong></p>
    <p>Has ganado una nueva comision por referido.</p>
    <ul>
        <li><strong>Monto de compra:</strong> {_money(total_amount)}</li>
        <li><strong>Tu comision (5%):</strong> {_money(commission)}</li>
        <li><strong>Cliente referido:</strong> {escape(referred_name or 'un cliente')}</li>
        <li><strong>Fecha:</strong> {when}</li>
    </ul>
    <p>Tu comision se procesara en los proximos dias.</p>
    """

    text = (
        f"Hola {name},\n\n"
        "Has ganado una nueva comision por referido.\n\n"
        f"- Monto de compra: {_money(total_amount)}\n"
        f"- Tu comision: {_money(commission)}\n"
        f"- Cliente referido: {referred_name or 'un cliente'}\n"
        f"- Fecha: {when}\n"
    )
    return subject, html, text
