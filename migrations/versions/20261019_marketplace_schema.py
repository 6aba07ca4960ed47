"""Esquema del marketplace: usuarios, catálogo, órdenes, comisiones y correo

Revision ID: 20261019_marketplace
Revises:
Create Date: 2026-10-19

Crea las tablas de cuentas, empresas, vendedores y productos, las órdenes
por vendedor con sus líneas, el registro de comisiones de referidos con sus
códigos cortos y carritos compartidos, las métricas e historial de correos
y los webhooks procesados (prevención de replay).
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261019_marketplace'
down_revision = None
branch_labels = None
depends_on = None


ACCOUNT_ROLES = ('cliente', 'empresa', 'admin', 'embajador')
REFERRAL_STATUSES = ('pending', 'paid')


def upgrade():
    op.create_table(
        'empresas',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_empresas'),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('role', sa.Enum(*ACCOUNT_ROLES, name='account_role'), nullable=False),
        sa.Column('company_id', sa.String(36), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['empresas.id'], name='fk_users_company_id_empresas'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table(
        'vendedores',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('company_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['empresas.id'], name='fk_vendedores_company_id_empresas'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_vendedores_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_vendedores'),
    )
    op.create_index('ix_vendedores_company_id', 'vendedores', ['company_id'])

    op.create_table(
        'productos',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('category', sa.String(120), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=True),
        sa.Column('company_id', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['empresas.id'], name='fk_productos_company_id_empresas'),
        sa.PrimaryKeyConstraint('id', name='pk_productos'),
    )
    op.create_index('ix_productos_company_id', 'productos', ['company_id'])

    op.create_table(
        'producto_vendedores',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('product_id', sa.String(36), nullable=False),
        sa.Column('seller_id', sa.String(36), nullable=False),
        sa.Column('commission_pct', sa.Numeric(5, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['productos.id'], ondelete='CASCADE',
                                name='fk_producto_vendedores_product_id_productos'),
        sa.ForeignKeyConstraint(['seller_id'], ['vendedores.id'], ondelete='CASCADE',
                                name='fk_producto_vendedores_seller_id_vendedores'),
        sa.PrimaryKeyConstraint('id', name='pk_producto_vendedores'),
    )
    op.create_index('ix_producto_vendedores_product_id', 'producto_vendedores', ['product_id'])

    # Una orden por (vendedor, pago)
    op.create_table(
        'ordenes',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('payment_reference', sa.String(255), nullable=False),
        sa.Column('seller_id', sa.String(36), nullable=False),
        sa.Column('buyer_user_id', sa.String(36), nullable=True),
        sa.Column('customer_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['seller_id'], ['vendedores.id'], name='fk_ordenes_seller_id_vendedores'),
        sa.PrimaryKeyConstraint('id', name='pk_ordenes'),
        sa.UniqueConstraint('seller_id', 'payment_reference', name='uq_ordenes_seller_payment'),
    )
    op.create_index('ix_ordenes_payment_reference', 'ordenes', ['payment_reference'])

    op.create_table(
        'orden_productos',
        sa.Column('order_id', sa.String(36), nullable=False),
        sa.Column('product_id', sa.String(36), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['ordenes.id'], ondelete='CASCADE',
                                name='fk_orden_productos_order_id_ordenes'),
        sa.ForeignKeyConstraint(['product_id'], ['productos.id'], name='fk_orden_productos_product_id_productos'),
        sa.PrimaryKeyConstraint('order_id', 'product_id', name='pk_orden_productos'),
    )

    op.create_table(
        'orden_lineas',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(36), nullable=False),
        sa.Column('product_id', sa.String(36), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['ordenes.id'], ondelete='CASCADE',
                                name='fk_orden_lineas_order_id_ordenes'),
        sa.ForeignKeyConstraint(['product_id'], ['productos.id'], name='fk_orden_lineas_product_id_productos'),
        sa.PrimaryKeyConstraint('id', name='pk_orden_lineas'),
    )
    op.create_index('ix_orden_lineas_order_id', 'orden_lineas', ['order_id'])

    # Una comisión por (referidor, pago)
    op.create_table(
        'referrals',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('referrer_id', sa.String(36), nullable=False),
        sa.Column('referred_user_id', sa.String(36), nullable=True),
        sa.Column('referred_user_email', sa.String(255), nullable=True),
        sa.Column('referred_user_name', sa.String(200), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('commission', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.Enum(*REFERRAL_STATUSES, name='referral_status'), nullable=False),
        sa.Column('payment_reference', sa.String(255), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['referrer_id'], ['users.id'], name='fk_referrals_referrer_id_users'),
        sa.ForeignKeyConstraint(['referred_user_id'], ['users.id'], name='fk_referrals_referred_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_referrals'),
        sa.UniqueConstraint('referrer_id', 'payment_reference', name='uq_referrals_referrer_payment'),
    )
    op.create_index('ix_referrals_referrer_id', 'referrals', ['referrer_id'])

    op.create_table(
        'referral_short_codes',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('short_code', sa.String(16), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_referral_short_codes_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_referral_short_codes'),
        sa.UniqueConstraint('user_id', name='uq_referral_short_codes_user_id'),
    )
    op.create_index('ix_referral_short_codes_short_code', 'referral_short_codes', ['short_code'], unique=True)

    op.create_table(
        'shared_cart_links',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('short_code', sa.String(16), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('cart_data', sa.JSON(), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_shared_cart_links_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_shared_cart_links'),
    )
    op.create_index('ix_shared_cart_links_short_code', 'shared_cart_links', ['short_code'], unique=True)

    op.create_table(
        'email_metrics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('metric', sa.String(50), nullable=False),
        sa.Column('period', sa.String(10), nullable=False),
        sa.Column('bucket', sa.String(20), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_email_metrics'),
        sa.UniqueConstraint('metric', 'period', 'bucket', name='uq_email_metrics_bucket'),
    )

    op.create_table(
        'email_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('admin_user', sa.String(255), nullable=True),
        sa.Column('error', sa.String(500), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_email_history'),
    )
    op.create_index('ix_email_history_kind', 'email_history', ['kind'])
    op.create_index('ix_email_history_sent_at', 'email_history', ['sent_at'])

    op.create_table(
        'processed_webhooks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.String(100), nullable=False),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('payload_hash', sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_processed_webhooks'),
    )
    op.create_index('ix_processed_webhooks_request_id', 'processed_webhooks', ['request_id'], unique=True)
    # Para la limpieza de registros antiguos
    op.create_index('ix_processed_webhooks_processed_at', 'processed_webhooks', ['processed_at'])


def downgrade():
    op.drop_index('ix_processed_webhooks_processed_at', table_name='processed_webhooks')
    op.drop_index('ix_processed_webhooks_request_id', table_name='processed_webhooks')
    op.drop_table('processed_webhooks')
    op.drop_index('ix_email_history_sent_at', table_name='email_history')
    op.drop_index('ix_email_history_kind', table_name='email_history')
    op.drop_table('email_history')
    op.drop_table('email_metrics')
    op.drop_index('ix_shared_cart_links_short_code', table_name='shared_cart_links')
    op.drop_table('shared_cart_links')
    op.drop_index('ix_referral_short_codes_short_code', table_name='referral_short_codes')
    op.drop_table('referral_short_codes')
    op.drop_index('ix_referrals_referrer_id', table_name='referrals')
    op.drop_table('referrals')
    op.drop_index('ix_orden_lineas_order_id', table_name='orden_lineas')
    op.drop_table('orden_lineas')
    op.drop_table('orden_productos')
    op.drop_index('ix_ordenes_payment_reference', table_name='ordenes')
    op.drop_table('ordenes')
    op.drop_index('ix_producto_vendedores_product_id', table_name='producto_vendedores')
    op.drop_table('producto_vendedores')
    op.drop_index('ix_productos_company_id', table_name='productos')
    op.drop_table('productos')
    op.drop_index('ix_vendedores_company_id', table_name='vendedores')
    op.drop_table('vendedores')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    op.drop_table('empresas')

    sa.Enum(name='referral_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='account_role').drop(op.get_bind(), checkfirst=True)
