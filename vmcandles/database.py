# vmcandles/database.py
import click
from flask import current_app
from flask.cli import with_appcontext

from . import db
from .models import (
    User, Profile, Product, ProductTranslation, AudioContent, AudioAccessKey,
    UserRoleEnum, CustomerTypeEnum, LanguageEnum, ProductCategoryEnum, SubscriptionPlanEnum
)

LONG_DESCRIPTIONS = {
    LanguageEnum.ES: "En V&M creamos velas artesanales de alta gama, formuladas con ceras vegetales, "
                     "aceites esenciales puros y fragancias de grado perfumista que elevan los sentidos.",
    LanguageEnum.EN: "At V&M we create high-end artisanal candles, formulated with plant waxes, "
                     "pure essential oils and perfume-grade fragrances that elevate the senses.",
}

SEED_USERS = [
    {"email": "test@example.com", "password": "Test123!", "first_name": "Test", "last_name": "User",
     "phone": "+56987654321", "customer_type": "INDIVIDUAL", "tax_id": "12345678-9"},
    {"email": "john.doe@example.com", "password": "User123!", "first_name": "John", "last_name": "Doe",
     "phone": "+56912345001", "customer_type": "INDIVIDUAL"},
    {"email": "maria.garcia@example.com", "password": "User123!", "first_name": "María", "last_name": "García",
     "phone": "+56912345002", "customer_type": "INDIVIDUAL", "tax_id": "98765432-1"},
    {"email": "carlos.silva@example.com", "password": "User123!", "first_name": "Carlos", "last_name": "Silva",
     "phone": "+56912345003", "customer_type": "BUSINESS", "tax_id": "76543210-K"},
]

SEED_PRODUCTS = [
    {"id": "1", "category": "CANDLES", "price": 48.0, "image": "/images/candle-product.png",
     "burn_time": "50-60 hours", "size": "250g", "featured": True, "sort_order": 1},
    {"id": "2", "category": "CANDLES", "price": 52.0, "image": "/images/executive_balance.png",
     "burn_time": "55-65 hours", "size": "250g", "featured": True, "sort_order": 2},
    {"id": "acc-1", "category": "ACCESSORIES", "price": 25.0, "image": "/images/accessory-snuffer.jpg", "sort_order": 1},
    {"id": "acc-2", "category": "ACCESSORIES", "price": 28.0, "image": "/images/accessory-trimmer.jpg", "sort_order": 2},
    {"id": "acc-3", "category": "ACCESSORIES", "price": 22.0, "image": "/images/accessory-dipper.jpg", "sort_order": 3},
    {"id": "acc-4", "category": "SETS", "price": 69.0, "image": "/images/accessory-set.jpg", "sort_order": 4},
]

SEED_TRANSLATIONS = {
    "1": {
        "ES": ("V&M Ritual de Calma", "Una lujosa vela de vainilla cremosa para confort cálido y tranquilidad suave",
               ["Calma Profunda & Armonía Interior", "Confort Sensorial & Calidez Afectiva",
                "Cera vegetal 100% natural", "Aceites esenciales puros"]),
        "EN": ("V&M Calm Ritual", "A luxurious creamy vanilla candle for warm comfort and gentle tranquility",
               ["Deep Calm & Inner Harmony", "Sensory Comfort & Emotional Warmth",
                "100% natural plant wax", "Pure essential oils"]),
    },
    "2": {
        "ES": ("V&M Balance Ejecutivo", "Una vela premium diseñada para espacios profesionales, combinando bergamota "
               "revitalizante con cedro terroso para claridad mental y enfoque productivo",
               ["Claridad Mental & Enfoque Estratégico", "Balance Profesional & Estabilidad Emocional",
                "Ideal para oficinas y espacios de trabajo", "Fragancia sofisticada y discreta"]),
        "EN": ("V&M Executive Balance", "A premium candle designed for professional spaces, combining revitalizing "
               "bergamot with earthy cedar for mental clarity and productive focus",
               ["Mental Clarity & Strategic Focus", "Professional Balance & Emotional Stability",
                "Ideal for offices and workspaces", "Sophisticated and discrete fragrance"]),
    },
    "acc-1": {
        "ES": ("Apagavelas Premium", "Apagavelas de acero inoxidable con acabado dorado para extinguir velas sin humo",
               ["Acero inoxidable", "Acabado dorado", "Sin humo", "Diseño elegante"]),
        "EN": ("Premium Candle Snuffer", "Stainless steel candle snuffer with gold finish to extinguish candles smoke-free",
               ["Stainless steel", "Gold finish", "Smoke-free", "Elegant design"]),
    },
    "acc-2": {
        "ES": ("Cortamechas de Lujo", "Tijeras especializadas para recortar mechas y mantener una llama perfecta",
               ["Acero quirúrgico", "Corte preciso", "Bandeja recolectora", "Acabado premium"]),
        "EN": ("Luxury Wick Trimmer", "Specialized scissors to trim wicks and maintain a perfect flame",
               ["Surgical steel", "Precise cut", "Collection tray", "Premium finish"]),
    },
    "acc-3": {
        "ES": ("Apagador Sumergible", "Apagador de mecha que sumerge la llama en la cera para evitar humo y conservar el aroma",
               ["Acero resistente", "Sin humo", "Conserva el aroma", "Fácil de usar"]),
        "EN": ("Wick Dipper", "Wick dipper that submerges the flame in wax to avoid smoke and preserve aroma",
               ["Resistant steel", "Smoke-free", "Preserves aroma", "Easy to use"]),
    },
    "acc-4": {
        "ES": ("Set Completo de Accesorios Premium", "Set completo de accesorios para el cuidado profesional de tus velas, "
               "incluye apagavelas, cortamechas, apagador sumergible y bandeja dorada",
               ["3 herramientas profesionales", "Bandeja organizadora dorada", "Acabado premium", "Cuidado completo de velas"]),
        "EN": ("Complete Premium Accessories Set", "Complete accessory set for professional candle care, includes "
               "snuffer, wick trimmer, wick dipper and gold tray",
               ["3 professional tools", "Gold organizer tray", "Premium finish", "Complete candle care"]),
    },
}

# (title_key, category, duration_seconds, is_preview, required_plan)
SEED_AUDIO = [
    ('deepCalm', 'MEDITATION', 600, True, None),
    ('spiritualConnection', 'AMBIENT', 720, True, None),
    ('emotionalBalance', 'MEDITATION', 540, True, None),
    ('morningSerenity', 'AMBIENT', 1800, False, None),
    ('eveningRelaxation', 'AMBIENT', 2400, False, None),
    ('forestRain', 'AMBIENT', 3600, False, None),
    ('oceanWaves', 'AMBIENT', 3600, False, None),
    ('guidedBreathing', 'MEDITATION', 900, False, None),
    ('bodyRelaxation', 'MEDITATION', 1200, False, None),
    ('innerPeace', 'MEDITATION', 1500, False, None),
    ('sleepMeditation', 'MEDITATION', 1800, False, None),
    ('healingFrequency432', 'MEDITATION', 2400, False, 'QUARTERLY'),
    ('chakraBalance', 'MEDITATION', 2700, False, 'QUARTERLY'),
    ('tibetanBowls', 'AMBIENT', 3000, False, 'QUARTERLY'),
    ('binauralBeats', 'AMBIENT', 3600, False, 'QUARTERLY'),
    ('exclusiveMasterclass', 'MEDITATION', 5400, False, 'ANNUAL'),
    ('premiumRetreat', 'MEDITATION', 7200, False, 'ANNUAL'),
    ('seasonalCollection', 'AMBIENT', 4800, False, 'ANNUAL'),
    ('liveSessionRecording', 'MEDITATION', 5400, False, 'ANNUAL'),
]

SEED_ACCESS_KEYS = [
    ('VM-DEMO1-MONTH', 'MONTHLY', 1),
    ('VM-DEMO3-QUART', 'QUARTERLY', 3),
    ('VM-DEMO12-YEAR', 'ANNUAL', 12),
    ('VM-PROMO-GIFT1', 'MONTHLY', 1),
    ('VM-PROMO-GIFT2', 'QUARTERLY', 3),
]

DEFAULT_SEED_STOCK = 50


def _seed_user(email, password, role, first_name, last_name, phone=None, customer_type='INDIVIDUAL', tax_id=None):
    if User.query.filter_by(email=email).first():
        current_app.logger.info(f"User '{email}' already exists.")
        return 0
    user = User(email=email, role=role)
    user.set_password(password)
    user.profile = Profile(first_name=first_name, last_name=last_name, phone=phone,
                           customer_type=CustomerTypeEnum(customer_type), tax_id=tax_id)
    db.session.add(user)
    return 1


def populate_initial_data():
    """Seeds users, catalog, audio library and demo access keys. Existing rows are left untouched."""
    created = {"users": 0, "products": 0, "translations": 0, "audio": 0, "access_keys": 0}

    admin_email = current_app.config.get('INITIAL_ADMIN_EMAIL')
    admin_password = current_app.config.get('INITIAL_ADMIN_PASSWORD')
    if admin_email and admin_password:
        created["users"] += _seed_user(admin_email, admin_password, UserRoleEnum.ADMIN, "Admin", "V&M", phone="+56912345678")
    else:
        current_app.logger.warning(
            "INITIAL_ADMIN_EMAIL or INITIAL_ADMIN_PASSWORD not set in config. "
            "Initial admin user will not be created automatically."
        )
    for user_data in SEED_USERS:
        data = dict(user_data)
        created["users"] += _seed_user(data.pop('email'), data.pop('password'), UserRoleEnum.USER, **data)

    for product_data in SEED_PRODUCTS:
        product = db.session.get(Product, product_data['id'])
        if product is None:
            data = dict(product_data)
            product = Product(
                category=ProductCategoryEnum(data.pop('category')), images=[data['image']],
                in_stock=True, stock=DEFAULT_SEED_STOCK, **data
            )
            db.session.add(product)
            created["products"] += 1
        for language_code, (name, description, features) in SEED_TRANSLATIONS[product.id].items():
            language = LanguageEnum(language_code)
            if product.translation_for(language) is None:
                db.session.add(ProductTranslation(
                    product_id=product.id, language=language, name=name, description=description,
                    long_description=LONG_DESCRIPTIONS[language], features=features,
                ))
                created["translations"] += 1
        db.session.flush()

    for sort_order, (title_key, category, duration, is_preview, required_plan) in enumerate(SEED_AUDIO):
        if AudioContent.query.filter_by(title_key=title_key).first():
            continue
        db.session.add(AudioContent(
            title_key=title_key, category=category, duration_seconds=duration, is_preview=is_preview,
            required_plan=SubscriptionPlanEnum(required_plan) if required_plan else None,
            file_url=f"/audio/{title_key}.mp3", sort_order=sort_order,
        ))
        created["audio"] += 1

    for key_code, plan_id, duration_months in SEED_ACCESS_KEYS:
        if AudioAccessKey.query.filter_by(key_code=key_code).first():
            continue
        db.session.add(AudioAccessKey(key_code=key_code, plan_id=SubscriptionPlanEnum(plan_id), duration_months=duration_months))
        created["access_keys"] += 1

    try:
        db.session.commit()
        current_app.logger.info(f"Initial data committed: {created}")
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error committing initial data: {e}", exc_info=True)
        raise
    return created


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Creates all tables (use `flask db upgrade` once migrations exist)."""
    db.create_all()
    click.echo('Database tables created.')

@click.command('seed-db')
@with_appcontext
def seed_db_command():
    """Seeds the database with initial data."""
    created = populate_initial_data()
    click.echo(f"Database seeded: {created}")

@click.command('renew-subscriptions')
@with_appcontext
def renew_subscriptions_command():
    """Runs the subscription renewal sweep once."""
    from .services.subscription_service import renew_due_subscriptions
    stats = renew_due_subscriptions()
    click.echo(f"Renewed: {stats['renewed']}, skipped: {stats['skipped']}, "
               f"failed: {stats['failed']}, expired: {stats['expired']}")

def register_db_commands(app):
    """Registers database-related CLI commands."""
    app.cli.add_command(init_db_command)
    app.cli.add_command(seed_db_command)
    app.cli.add_command(renew_subscriptions_command)
    app.logger.info("Database CLI commands registered.")
