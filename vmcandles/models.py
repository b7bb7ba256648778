# vmcandles/models.py
import enum
from werkzeug.security import generate_password_hash, check_password_hash

from . import db
from .utils import utcnow, isoformat_or_none


# --- Enum Definitions ---
class UserRoleEnum(enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"

class CustomerTypeEnum(enum.Enum):
    INDIVIDUAL = "INDIVIDUAL"
    BUSINESS = "BUSINESS"

class LanguageEnum(enum.Enum):
    ES = "ES"
    EN = "EN"
    FR = "FR"
    DE = "DE"
    PT = "PT"
    ZH = "ZH"
    HI = "HI"

class AddressTypeEnum(enum.Enum):
    SHIPPING = "SHIPPING"
    BILLING = "BILLING"

class ProductCategoryEnum(enum.Enum):
    CANDLES = "CANDLES"
    ACCESSORIES = "ACCESSORIES"
    SETS = "SETS"

class OrderStatusEnum(enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

class PaymentStatusEnum(enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"

class SubscriptionPlanEnum(enum.Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUAL = "ANNUAL"

class SubscriptionStatusEnum(enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

class InvoiceStatusEnum(enum.Enum):
    ISSUED = "ISSUED"
    CANCELLED = "CANCELLED"

class PaymentContextTypeEnum(enum.Enum):
    ORDER = "ORDER"
    SUBSCRIPTION = "SUBSCRIPTION"
    UPGRADE = "UPGRADE"

class AuditLogStatusEnum(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    INFO = "info"


def _enum_value(member):
    return member.value if member is not None else None


# --- Model Definitions ---
class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.Enum(UserRoleEnum, name="user_role_enum"), nullable=False, default=UserRoleEnum.USER, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    profile = db.relationship('Profile', backref='user', uselist=False, cascade="all, delete-orphan")
    addresses = db.relationship('Address', backref='user', lazy='dynamic', cascade="all, delete-orphan")
    orders = db.relationship('Order', backref='customer', lazy='dynamic')
    subscriptions = db.relationship('Subscription', backref='user', lazy='dynamic', cascade="all, delete-orphan")
    cart = db.relationship('Cart', backref='user', uselist=False, cascade="all, delete-orphan")
    wishlist_items = db.relationship('WishlistItem', backref='user', lazy='dynamic', cascade="all, delete-orphan")
    reviews = db.relationship('ProductReview', backref='user', lazy='dynamic', cascade="all, delete-orphan")

    def set_password(self, password): self.password_hash = generate_password_hash(password)
    def check_password(self, password): return check_password_hash(self.password_hash, password) if self.password_hash else False

    @property
    def is_admin(self):
        return self.role == UserRoleEnum.ADMIN

    def to_dict(self, include_profile=True):
        data = {
            "id": self.id,
            "email": self.email,
            "role": _enum_value(self.role),
            "created_at": isoformat_or_none(self.created_at),
        }
        if include_profile:
            data["profile"] = self.profile.to_dict() if self.profile else None
        return data

    def __repr__(self): return f'<User {self.email}>'


class Profile(db.Model):
    __tablename__ = 'profiles'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))
    customer_type = db.Column(db.Enum(CustomerTypeEnum, name="customer_type_enum"), nullable=False, default=CustomerTypeEnum.INDIVIDUAL)
    tax_id = db.Column(db.String(20))
    preferred_language = db.Column(db.Enum(LanguageEnum, name="language_enum"), nullable=False, default=LanguageEnum.ES)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self):
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "customer_type": _enum_value(self.customer_type),
            "tax_id": self.tax_id,
            "preferred_language": _enum_value(self.preferred_language),
        }

    def __repr__(self): return f'<Profile {self.full_name}>'


class Address(db.Model):
    __tablename__ = 'addresses'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    type = db.Column(db.Enum(AddressTypeEnum, name="address_type_enum"), nullable=False, default=AddressTypeEnum.SHIPPING)
    street = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    region = db.Column(db.String(100), nullable=False)
    postal_code = db.Column(db.String(20), nullable=False)
    country = db.Column(db.String(100), nullable=False, default='Chile')
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id, "type": _enum_value(self.type), "street": self.street,
            "city": self.city, "region": self.region, "postal_code": self.postal_code,
            "country": self.country, "is_default": self.is_default,
        }

    def __repr__(self): return f'<Address {self.id} {self.street}, {self.city}>'


class Product(db.Model):
    __tablename__ = 'products'
    id = db.Column(db.String(50), primary_key=True)
    category = db.Column(db.Enum(ProductCategoryEnum, name="product_category_enum"), nullable=False, index=True)
    price = db.Column(db.Float, nullable=False)
    image = db.Column(db.String(255))
    images = db.Column(db.JSON, default=list)
    in_stock = db.Column(db.Boolean, default=True, nullable=False, index=True)
    stock = db.Column(db.Integer, default=0, nullable=False)
    low_stock_threshold = db.Column(db.Integer, default=5, nullable=False)
    track_inventory = db.Column(db.Boolean, default=True, nullable=False)
    featured = db.Column(db.Boolean, default=False, nullable=False, index=True)
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    burn_time = db.Column(db.String(50))
    size = db.Column(db.String(50))
    audio_url = db.Column(db.String(255))
    audio_title = db.Column(db.String(150))
    audio_duration = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    translations = db.relationship('ProductTranslation', backref='product', lazy='dynamic', cascade="all, delete-orphan")
    order_items = db.relationship('OrderItem', backref='product', lazy='dynamic')
    cart_items = db.relationship('CartItem', backref='product', lazy='dynamic', cascade="all, delete-orphan")
    wishlist_items = db.relationship('WishlistItem', backref='product', lazy='dynamic', cascade="all, delete-orphan")
    reviews = db.relationship('ProductReview', backref='product', lazy='dynamic', cascade="all, delete-orphan")

    __table_args__ = (
        db.CheckConstraint('price >= 0', name='ck_product_price'),
        db.CheckConstraint('stock >= 0', name='ck_product_stock'),
    )

    def translation_for(self, language):
        lang = language if isinstance(language, LanguageEnum) else LanguageEnum(language)
        return self.translations.filter_by(language=lang).first()

    @property
    def stock_status(self):
        if self.stock == 0: return 'out-of-stock'
        if self.stock <= self.low_stock_threshold: return 'low-stock'
        return 'in-stock'

    def to_dict(self, language='ES', include_translations=False):
        loc = self.translation_for(language)
        data = {
            "id": self.id,
            "category": _enum_value(self.category),
            "price": self.price,
            "image": self.image,
            "images": self.images or [],
            "in_stock": self.in_stock,
            "stock": self.stock,
            "featured": self.featured,
            "sort_order": self.sort_order,
            "burn_time": self.burn_time,
            "size": self.size,
            "audio_url": self.audio_url,
            "audio_title": self.audio_title,
            "audio_duration": self.audio_duration,
            "name": loc.name if loc else 'Untranslated',
            "description": loc.description if loc else None,
            "long_description": loc.long_description if loc else None,
            "features": (loc.features if loc else None) or [],
            "language": language.value if isinstance(language, LanguageEnum) else language,
        }
        if include_translations:
            data["translations"] = [t.to_dict() for t in self.translations.order_by(ProductTranslation.language)]
        return data

    def __repr__(self): return f'<Product {self.id}>'


class ProductTranslation(db.Model):
    __tablename__ = 'product_translations'
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.String(50), db.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    language = db.Column(db.Enum(LanguageEnum, name="translation_language_enum"), nullable=False, index=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    long_description = db.Column(db.Text)
    features = db.Column(db.JSON, default=list)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (db.UniqueConstraint('product_id', 'language', name='uq_product_translation_language'),)

    def to_dict(self):
        return {
            "language": _enum_value(self.language), "name": self.name,
            "description": self.description, "long_description": self.long_description,
            "features": self.features or [],
        }

    def __repr__(self): return f'<ProductTranslation {self.product_id}/{_enum_value(self.language)}>'


class Cart(db.Model):
    __tablename__ = 'carts'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    items = db.relationship('CartItem', backref='cart', lazy='dynamic', cascade="all, delete-orphan")

    def to_dict(self):
        items = self.items.order_by(CartItem.id).all()
        return {
            "id": self.id,
            "items": [i.to_dict() for i in items],
            "total_items": sum(i.quantity for i in items),
            "total_amount": round(sum(i.price * i.quantity for i in items), 2),
        }


class CartItem(db.Model):
    __tablename__ = 'cart_items'
    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey('carts.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(50), db.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    # Snapshot taken when the row is first added
    name = db.Column(db.String(150), nullable=False)
    price = db.Column(db.Float, nullable=False)
    image = db.Column(db.String(255))
    added_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint('cart_id', 'product_id', name='uq_cart_product'),
        db.CheckConstraint('quantity >= 1', name='ck_cart_item_quantity'),
    )

    def to_dict(self):
        return {
            "id": self.id, "product_id": self.product_id, "quantity": self.quantity,
            "name": self.name, "price": self.price, "image": self.image,
            "subtotal": round(self.price * self.quantity, 2),
        }


class Order(db.Model):
    __tablename__ = 'orders'
    id = db.Column(db.String(20), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    status = db.Column(db.Enum(OrderStatusEnum, name="order_status_enum"), nullable=False, default=OrderStatusEnum.PENDING, index=True)
    payment_status = db.Column(db.Enum(PaymentStatusEnum, name="order_payment_status_enum"), nullable=False, default=PaymentStatusEnum.PENDING, index=True)
    payment_method = db.Column(db.String(50), default='WEBPAY')

    customer_name = db.Column(db.String(200), nullable=False)
    customer_email = db.Column(db.String(120), nullable=False)
    customer_phone = db.Column(db.String(20))
    customer_type = db.Column(db.Enum(CustomerTypeEnum, name="order_customer_type_enum"), nullable=False, default=CustomerTypeEnum.INDIVIDUAL)
    customer_tax_id = db.Column(db.String(20))

    shipping_street = db.Column(db.String(255), nullable=False); shipping_city = db.Column(db.String(100), nullable=False)
    shipping_region = db.Column(db.String(100)); shipping_postal_code = db.Column(db.String(20)); shipping_country = db.Column(db.String(100))
    billing_street = db.Column(db.String(255)); billing_city = db.Column(db.String(100))
    billing_region = db.Column(db.String(100)); billing_postal_code = db.Column(db.String(20)); billing_country = db.Column(db.String(100))

    subtotal = db.Column(db.Float, nullable=False)
    shipping_cost = db.Column(db.Float, nullable=False, default=0.0)
    total = db.Column(db.Float, nullable=False)
    notes = db.Column(db.Text)

    tracking_number = db.Column(db.String(100)); carrier = db.Column(db.String(100))
    admin_notes = db.Column(db.Text); shipped_at = db.Column(db.DateTime)

    webpay_token = db.Column(db.String(100), index=True)
    webpay_transaction_id = db.Column(db.String(100))

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship('OrderItem', backref='order', lazy='select', cascade="all, delete-orphan", order_by='OrderItem.id')
    invoice = db.relationship('Invoice', backref='order', uselist=False)

    def to_dict(self, include_items=True):
        data = {
            "id": self.id, "user_id": self.user_id,
            "status": _enum_value(self.status), "payment_status": _enum_value(self.payment_status),
            "payment_method": self.payment_method,
            "customer_name": self.customer_name, "customer_email": self.customer_email,
            "customer_phone": self.customer_phone, "customer_type": _enum_value(self.customer_type),
            "customer_tax_id": self.customer_tax_id,
            "shipping_address": {
                "street": self.shipping_street, "city": self.shipping_city, "region": self.shipping_region,
                "postal_code": self.shipping_postal_code, "country": self.shipping_country,
            },
            "billing_address": {
                "street": self.billing_street, "city": self.billing_city, "region": self.billing_region,
                "postal_code": self.billing_postal_code, "country": self.billing_country,
            },
            "subtotal": self.subtotal, "shipping_cost": self.shipping_cost, "total": self.total,
            "notes": self.notes,
            "tracking_number": self.tracking_number, "carrier": self.carrier,
            "admin_notes": self.admin_notes, "shipped_at": isoformat_or_none(self.shipped_at),
            "webpay_transaction_id": self.webpay_transaction_id,
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
            "invoice": self.invoice.to_summary_dict() if self.invoice else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self): return f'<Order {self.id} {_enum_value(self.status)}>'


class OrderItem(db.Model):
    __tablename__ = 'order_items'
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(20), db.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(50), db.ForeignKey('products.id', ondelete='SET NULL'), index=True)
    # Checkout-time snapshot, never updated afterwards
    product_name = db.Column(db.String(150), nullable=False)
    product_image = db.Column(db.String(255))
    price = db.Column(db.Float, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            "id": self.id, "product_id": self.product_id, "product_name": self.product_name,
            "product_image": self.product_image, "price": self.price,
            "quantity": self.quantity, "subtotal": self.subtotal,
        }


class Invoice(db.Model):
    __tablename__ = 'invoices'
    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    order_id = db.Column(db.String(20), db.ForeignKey('orders.id'), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    customer_type = db.Column(db.Enum(CustomerTypeEnum, name="invoice_customer_type_enum"), nullable=False)
    customer_name = db.Column(db.String(200), nullable=False)
    customer_tax_id = db.Column(db.String(20))
    customer_email = db.Column(db.String(120), nullable=False)
    customer_address = db.Column(db.String(500))
    items = db.Column(db.JSON, nullable=False, default=list)
    subtotal = db.Column(db.Float, nullable=False)
    tax_amount = db.Column(db.Float, nullable=False, default=0.0)
    shipping_cost = db.Column(db.Float, nullable=False, default=0.0)
    total = db.Column(db.Float, nullable=False)
    status = db.Column(db.Enum(InvoiceStatusEnum, name="invoice_status_enum"), nullable=False, default=InvoiceStatusEnum.ISSUED)
    pdf_url = db.Column(db.String(255))
    pdf_path = db.Column(db.String(255))
    issued_at = db.Column(db.DateTime, default=utcnow, index=True)

    def to_summary_dict(self):
        return {"id": self.id, "invoice_number": self.invoice_number, "pdf_url": self.pdf_url,
                "status": _enum_value(self.status), "issued_at": isoformat_or_none(self.issued_at)}

    def to_dict(self):
        data = self.to_summary_dict()
        data.update({
            "order_id": self.order_id, "user_id": self.user_id,
            "customer_type": _enum_value(self.customer_type), "customer_name": self.customer_name,
            "customer_tax_id": self.customer_tax_id, "customer_email": self.customer_email,
            "customer_address": self.customer_address, "items": self.items or [],
            "subtotal": self.subtotal, "tax_amount": self.tax_amount,
            "shipping_cost": self.shipping_cost, "total": self.total,
        })
        return data

    def __repr__(self): return f'<Invoice {self.invoice_number}>'


class Subscription(db.Model):
    __tablename__ = 'subscriptions'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    plan_id = db.Column(db.Enum(SubscriptionPlanEnum, name="subscription_plan_enum"), nullable=False)
    status = db.Column(db.Enum(SubscriptionStatusEnum, name="subscription_status_enum"), nullable=False, default=SubscriptionStatusEnum.CANCELLED, index=True)
    payment_status = db.Column(db.Enum(PaymentStatusEnum, name="subscription_payment_status_enum"), nullable=False, default=PaymentStatusEnum.PENDING)
    amount = db.Column(db.Integer, nullable=False, default=0)
    auto_renew = db.Column(db.Boolean, default=True, nullable=False)
    started_at = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime, index=True)
    next_renewal = db.Column(db.DateTime, index=True)
    last_payment_date = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    webpay_token = db.Column(db.String(100), index=True)
    webpay_transaction_id = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id, "user_id": self.user_id,
            "plan_id": _enum_value(self.plan_id), "status": _enum_value(self.status),
            "payment_status": _enum_value(self.payment_status), "amount": self.amount,
            "auto_renew": self.auto_renew,
            "started_at": isoformat_or_none(self.started_at),
            "expires_at": isoformat_or_none(self.expires_at),
            "next_renewal": isoformat_or_none(self.next_renewal),
            "last_payment_date": isoformat_or_none(self.last_payment_date),
            "cancelled_at": isoformat_or_none(self.cancelled_at),
            "created_at": isoformat_or_none(self.created_at),
        }

    def __repr__(self): return f'<Subscription {self.id} {_enum_value(self.plan_id)} {_enum_value(self.status)}>'


class PaymentContext(db.Model):
    """Durable record of what a gateway token pays for, resolved on the return callback."""
    __tablename__ = 'payment_contexts'
    token = db.Column(db.String(100), primary_key=True)
    context_type = db.Column(db.Enum(PaymentContextTypeEnum, name="payment_context_type_enum"), nullable=False, index=True)
    order_id = db.Column(db.String(20), db.ForeignKey('orders.id'), index=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey('subscriptions.id'), index=True)
    new_plan_id = db.Column(db.Enum(SubscriptionPlanEnum, name="payment_context_plan_enum"))
    buy_order = db.Column(db.String(26), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    outcome = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, default=utcnow)
    consumed_at = db.Column(db.DateTime)

    def __repr__(self): return f'<PaymentContext {self.context_type.value} {self.buy_order}>'


class AudioContent(db.Model):
    __tablename__ = 'audio_contents'
    id = db.Column(db.Integer, primary_key=True)
    title_key = db.Column(db.String(100), unique=True, nullable=False, index=True)
    category = db.Column(db.String(50), nullable=False, index=True)
    file_url = db.Column(db.String(255), nullable=False)
    duration_seconds = db.Column(db.Integer, nullable=False, default=0)
    is_preview = db.Column(db.Boolean, default=False, nullable=False, index=True)
    required_plan = db.Column(db.Enum(SubscriptionPlanEnum, name="audio_required_plan_enum"), nullable=True)
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self, include_file_url=True):
        return {
            "id": self.id, "title_key": self.title_key, "category": self.category,
            "file_url": self.file_url if include_file_url else None,
            "duration_seconds": self.duration_seconds, "is_preview": self.is_preview,
            "required_plan": _enum_value(self.required_plan), "sort_order": self.sort_order,
        }

    def __repr__(self): return f'<AudioContent {self.title_key}>'


class AudioAccessKey(db.Model):
    __tablename__ = 'audio_access_keys'
    id = db.Column(db.Integer, primary_key=True)
    key_code = db.Column(db.String(30), unique=True, nullable=False, index=True)
    plan_id = db.Column(db.Enum(SubscriptionPlanEnum, name="access_key_plan_enum"), nullable=False)
    duration_months = db.Column(db.Integer, nullable=False, default=1)
    is_redeemed = db.Column(db.Boolean, default=False, nullable=False, index=True)
    redeemed_by_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True)
    redeemed_at = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    redeemed_by = db.relationship('User', foreign_keys=[redeemed_by_user_id])

    def to_dict(self):
        return {
            "id": self.id, "key_code": self.key_code, "plan_id": _enum_value(self.plan_id),
            "duration_months": self.duration_months, "is_redeemed": self.is_redeemed,
            "redeemed_by_user_id": self.redeemed_by_user_id,
            "redeemed_at": isoformat_or_none(self.redeemed_at),
            "expires_at": isoformat_or_none(self.expires_at),
            "created_at": isoformat_or_none(self.created_at),
        }

    def __repr__(self): return f'<AudioAccessKey {self.key_code}>'


class ProductReview(db.Model):
    __tablename__ = 'product_reviews'
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.String(50), db.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text)
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_review_rating'),
        db.UniqueConstraint('product_id', 'user_id', name='uq_user_product_review'),
    )

    def to_dict(self):
        profile = self.user.profile if self.user else None
        return {
            "id": self.id, "product_id": self.product_id, "user_id": self.user_id,
            "author": profile.first_name if profile else None,
            "rating": self.rating, "comment": self.comment, "is_verified": self.is_verified,
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
        }


class WishlistItem(db.Model):
    __tablename__ = 'wishlist_items'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(50), db.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (db.UniqueConstraint('user_id', 'product_id', name='uq_user_wishlist_product'),)

    def to_dict(self, language='ES'):
        return {
            "id": self.id, "product_id": self.product_id,
            "product": self.product.to_dict(language=language) if self.product else None,
            "created_at": isoformat_or_none(self.created_at),
        }


class AuditLog(db.Model):
    __tablename__ = 'audit_log'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), index=True, nullable=True)
    action = db.Column(db.String(255), nullable=False, index=True)
    target_type = db.Column(db.String(50), index=True)
    target_id = db.Column(db.String(50), index=True)
    details = db.Column(db.Text)
    ip_address = db.Column(db.String(45))
    timestamp = db.Column(db.DateTime, default=utcnow, index=True)
    status = db.Column(db.Enum(AuditLogStatusEnum, name="audit_log_status_enum"), default=AuditLogStatusEnum.SUCCESS, index=True)

    def __repr__(self): return f'<AuditLog {self.action} {self.status.value if self.status else ""}>'
