"""Database models for AgriMarket."""
from datetime import datetime
from flask_login import UserMixin
from agrimarket import db

ROLES = ('farmer', 'buyer', 'admin')
PRODUCT_CATEGORIES = ('grain', 'vegetable', 'fruit', 'pulse', 'spice', 'other')
QUALITY_GRADES = ('A+', 'A', 'B+', 'B', 'C')
PRODUCT_STATUSES = ('pending_review', 'admin_review', 'approved', 'rejected',
                    'scheduled_collection', 'collected', 'payment_processed')
ORDER_STATUSES = ('pending', 'confirmed', 'processing', 'shipped', 'delivered', 'cancelled')
PAYMENT_STATUSES = ('pending', 'paid_to_farmer', 'completed')
NOTIFICATION_TYPES = ('product_status', 'order_update', 'payment', 'collection',
                      'admin_message', 'general')


class User(UserMixin, db.Model):
    """Marketplace participant. Credentials live with the identity provider."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    phone = db.Column(db.String(20))
    role = db.Column(db.String(10), nullable=False, default='buyer')  # farmer, buyer, admin
    is_suspended = db.Column(db.Boolean, default=False)
    suspension_reason = db.Column(db.Text)
    suspended_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    products = db.relationship('Product', backref='farmer', lazy='dynamic')
    orders = db.relationship('Order', backref='buyer', lazy='dynamic')

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'role': self.role,
            'is_suspended': bool(self.is_suspended),
            'suspension_reason': self.suspension_reason,
            'suspended_at': _iso(self.suspended_at),
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<User {self.name} ({self.role})>'


class Product(db.Model):
    """Farmer-submitted produce awaiting moderation and collection."""
    __tablename__ = 'products'
    __table_args__ = (
        db.CheckConstraint('quantity_available >= 0', name='ck_products_quantity_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    farmer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(20), nullable=False)
    description = db.Column(db.Text)
    quantity_available = db.Column(db.Float, nullable=False)
    quantity_unit = db.Column(db.String(20), default='kg')
    price_per_unit = db.Column(db.Float, nullable=False)
    quality_grade = db.Column(db.String(2), nullable=False, default='A')
    location = db.Column(db.String(200))
    organic_certified = db.Column(db.Boolean, default=False)
    harvest_date = db.Column(db.Date)
    collection_date = db.Column(db.Date)
    status = db.Column(db.String(30), nullable=False, default='pending_review')
    admin_notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'farmer_id': self.farmer_id,
            'name': self.name,
            'category': self.category,
            'description': self.description,
            'quantity_available': self.quantity_available,
            'quantity_unit': self.quantity_unit,
            'price_per_unit': self.price_per_unit,
            'quality_grade': self.quality_grade,
            'location': self.location,
            'organic_certified': self.organic_certified,
            'harvest_date': _iso(self.harvest_date),
            'collection_date': _iso(self.collection_date),
            'status': self.status,
            'admin_notes': self.admin_notes,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<Product {self.name} - {self.status}>'


class AggregatedProduct(db.Model):
    """Pooled inventory built from several farmers' collected produce."""
    __tablename__ = 'aggregated_products'
    __table_args__ = (
        db.CheckConstraint('total_quantity >= 0', name='ck_aggregated_quantity_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(20), nullable=False)
    description = db.Column(db.Text)
    total_quantity = db.Column(db.Float, nullable=False, default=0)
    quantity_unit = db.Column(db.String(20), nullable=False, default='kg')
    standard_price = db.Column(db.Float, nullable=False)
    quality_grade = db.Column(db.String(2), nullable=False, default='A')
    farmer_count = db.Column(db.Integer, nullable=False, default=0)
    regions = db.Column(db.JSON, default=list)
    admin_certified = db.Column(db.Boolean, default=False)
    quality_assured = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'product_name': self.product_name,
            'category': self.category,
            'description': self.description,
            'total_quantity': self.total_quantity,
            'quantity_unit': self.quantity_unit,
            'standard_price': self.standard_price,
            'quality_grade': self.quality_grade,
            'farmer_count': self.farmer_count,
            'regions': sorted(set(self.regions or [])),
            'admin_certified': self.admin_certified,
            'quality_assured': self.quality_assured,
        }

    def __repr__(self):
        return f'<AggregatedProduct {self.product_name} ({self.total_quantity})>'


class Order(db.Model):
    """Buyer purchase against a farmer product or an aggregated product."""
    __tablename__ = 'orders'
    __table_args__ = (
        db.CheckConstraint('quantity_ordered > 0', name='ck_orders_quantity_positive'),
    )

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=True)
    aggregated_product_id = db.Column(db.Integer, db.ForeignKey('aggregated_products.id'), nullable=True)
    # Snapshot at order time, the aggregate's composition may change later
    product_name = db.Column(db.String(200))
    quantity_ordered = db.Column(db.Float, nullable=False)
    total_amount = db.Column(db.Float, nullable=False)
    delivery_address = db.Column(db.Text, nullable=False)
    phone = db.Column(db.String(20))
    special_instructions = db.Column(db.Text)
    preferred_delivery_date = db.Column(db.Date)
    delivery_date = db.Column(db.Date)
    notes = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default='pending')
    payment_status = db.Column(db.String(20))
    tracking_id = db.Column(db.String(40))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = db.relationship('Product')
    aggregated_product = db.relationship('AggregatedProduct')

    def to_dict(self):
        return {
            'id': self.id,
            'buyer_id': self.buyer_id,
            'product_id': self.product_id,
            'aggregated_product_id': self.aggregated_product_id,
            'product_name': self.product_name,
            'quantity_ordered': self.quantity_ordered,
            'total_amount': self.total_amount,
            'delivery_address': self.delivery_address,
            'phone': self.phone,
            'special_instructions': self.special_instructions,
            'preferred_delivery_date': _iso(self.preferred_delivery_date),
            'delivery_date': _iso(self.delivery_date),
            'notes': self.notes,
            'status': self.status,
            'payment_status': self.payment_status,
            'tracking_id': self.tracking_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<Order {self.id} - {self.status}>'


class Payment(db.Model):
    """Settlement obligation. ``order_id`` is NULL for collection payments."""
    __tablename__ = 'payments'
    __table_args__ = (
        db.CheckConstraint('amount IS NULL OR farmer_amount <= amount',
                           name='ck_payments_farmer_amount_within_amount'),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=True, unique=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    farmer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    amount = db.Column(db.Float)
    farmer_amount = db.Column(db.Float, nullable=False)
    platform_fee = db.Column(db.Float)
    payment_type = db.Column(db.String(20), default='order')  # order, collection
    payment_method = db.Column(db.String(40))
    status = db.Column(db.String(20), nullable=False, default='pending')
    transaction_id = db.Column(db.String(64))
    processed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    order = db.relationship('Order', backref=db.backref('payment', uselist=False))

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'buyer_id': self.buyer_id,
            'farmer_id': self.farmer_id,
            'amount': self.amount,
            'farmer_amount': self.farmer_amount,
            'platform_fee': self.platform_fee,
            'payment_type': self.payment_type,
            'payment_method': self.payment_method,
            'status': self.status,
            'transaction_id': self.transaction_id,
            'processed_at': _iso(self.processed_at),
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Payment {self.id} - {self.status}>'


class Notification(db.Model):
    """User-directed message written as a side effect of workflow transitions."""
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False, default='general')
    read = db.Column(db.Boolean, default=False)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'))
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('notifications', lazy='dynamic'))

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'message': self.message,
            'type': self.type,
            'read': bool(self.read),
            'order_id': self.order_id,
            'product_id': self.product_id,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Notification {self.title}>'


def _iso(value):
    return value.isoformat() if value is not None else None
