# vmcandles/services/subscription_service.py
import math
from collections import namedtuple
from flask import current_app
from sqlalchemy import update

from .. import db
from ..models import (
    Subscription, AudioAccessKey,
    SubscriptionPlanEnum, SubscriptionStatusEnum
)
from ..utils import utcnow, add_months

# Prices in CLP
PLAN_PRICES = {
    SubscriptionPlanEnum.MONTHLY: 9990,
    SubscriptionPlanEnum.QUARTERLY: 25990,
    SubscriptionPlanEnum.ANNUAL: 89990,
}
PLAN_MONTHS = {
    SubscriptionPlanEnum.MONTHLY: 1,
    SubscriptionPlanEnum.QUARTERLY: 3,
    SubscriptionPlanEnum.ANNUAL: 12,
}
PLAN_HIERARCHY = {
    SubscriptionPlanEnum.MONTHLY: 1,
    SubscriptionPlanEnum.QUARTERLY: 2,
    SubscriptionPlanEnum.ANNUAL: 3,
}

UpgradeQuote = namedtuple('UpgradeQuote', ['is_upgrade', 'credit', 'amount_due'])
AccessGrant = namedtuple('AccessGrant', ['subscription', 'access_key', 'plan_id', 'expires_at'])


def parse_plan(value):
    """Returns the SubscriptionPlanEnum for a plan id string, or None when unknown."""
    if not value: return None
    try:
        return SubscriptionPlanEnum(str(value).upper())
    except ValueError:
        return None

def round_half_up(value):
    return int(math.floor(value + 0.5))

def period_end(start, plan_id):
    return add_months(start, PLAN_MONTHS[plan_id])


def get_plan_catalog():
    monthly = PLAN_PRICES[SubscriptionPlanEnum.MONTHLY]
    quarterly = PLAN_PRICES[SubscriptionPlanEnum.QUARTERLY]
    annual = PLAN_PRICES[SubscriptionPlanEnum.ANNUAL]
    return [
        {
            "id": "MONTHLY", "name": "Monthly Premium", "name_es": "Premium Mensual",
            "price": monthly, "currency": "CLP",
            "billing_period": "month", "billing_period_es": "mes",
            "features": [
                "Unlimited access to all audio experiences",
                "Early access to new candle releases",
                "Exclusive meditation and relaxation content",
                "10% discount on all purchases",
                "Priority customer support",
            ],
            "features_es": [
                "Acceso ilimitado a todas las experiencias de audio",
                "Acceso anticipado a nuevos lanzamientos de velas",
                "Contenido exclusivo de meditación y relajación",
                "10% de descuento en todas las compras",
                "Soporte al cliente prioritario",
            ],
        },
        {
            "id": "QUARTERLY", "name": "Quarterly Premium", "name_es": "Premium Trimestral",
            "price": quarterly, "currency": "CLP",
            "billing_period": "3 months", "billing_period_es": "3 meses",
            "savings": monthly * 3 - quarterly,
            "features": [
                "All Monthly Premium features",
                "Save 13% compared to monthly",
                "Exclusive quarterly curated playlists",
                "Free shipping on all orders",
                "Birthday gift - special candle",
            ],
            "features_es": [
                "Todas las características del Premium Mensual",
                "Ahorra 13% comparado con mensual",
                "Listas de reproducción exclusivas trimestrales",
                "Envío gratis en todos los pedidos",
                "Regalo de cumpleaños - vela especial",
            ],
            "popular": True,
        },
        {
            "id": "ANNUAL", "name": "Annual Premium", "name_es": "Premium Anual",
            "price": annual, "currency": "CLP",
            "billing_period": "year", "billing_period_es": "año",
            "savings": monthly * 12 - annual,
            "features": [
                "All Quarterly Premium features",
                "Save 25% compared to monthly",
                "Exclusive annual member events",
                "Free candle every quarter",
                "Lifetime 15% discount on all products",
                "Personalized scent consultation",
            ],
            "features_es": [
                "Todas las características del Premium Trimestral",
                "Ahorra 25% comparado con mensual",
                "Eventos exclusivos para miembros anuales",
                "Vela gratis cada trimestre",
                "Descuento permanente del 15% en todos los productos",
                "Consulta de fragancias personalizada",
            ],
            "best_value": True,
        },
    ]


def quote_plan_change(subscription, new_plan_id, now=None):
    """
    Prorated charge for moving `subscription` to `new_plan_id`.

    Upgrades are charged the new plan price minus the unused share of the current
    plan: credit = round(current_price * remaining / total). Downgrades cost nothing
    now and take effect at the next renewal.
    """
    now = now or utcnow()
    is_upgrade = PLAN_HIERARCHY[new_plan_id] > PLAN_HIERARCHY[subscription.plan_id]
    if not is_upgrade:
        return UpgradeQuote(is_upgrade=False, credit=0, amount_due=0)

    current_price = PLAN_PRICES[subscription.plan_id]
    new_price = PLAN_PRICES[new_plan_id]
    ratio = 0.0
    if subscription.started_at and subscription.expires_at:
        total_seconds = (subscription.expires_at - subscription.started_at).total_seconds()
        remaining_seconds = max(0.0, (subscription.expires_at - now).total_seconds())
        if total_seconds > 0:
            ratio = remaining_seconds / total_seconds
    credit = round_half_up(current_price * ratio)
    return UpgradeQuote(is_upgrade=True, credit=credit, amount_due=max(0, new_price - credit))


def activate_paid_period(subscription, plan_id, now=None, transaction_id=None):
    """Starts a fresh paid period for `plan_id` beginning at `now`."""
    now = now or utcnow()
    expires_at = period_end(now, plan_id)
    subscription.plan_id = plan_id
    subscription.status = SubscriptionStatusEnum.ACTIVE
    subscription.started_at = now
    subscription.expires_at = expires_at
    subscription.next_renewal = expires_at
    subscription.last_payment_date = now
    subscription.amount = PLAN_PRICES[plan_id]
    subscription.cancelled_at = None
    if transaction_id is not None:
        subscription.webpay_transaction_id = str(transaction_id)
    return subscription


def get_access_grant(user_id, now=None):
    """Current audio entitlement from an active subscription or a redeemed access key."""
    now = now or utcnow()
    subscription = Subscription.query.filter(
        Subscription.user_id == user_id,
        Subscription.status == SubscriptionStatusEnum.ACTIVE,
        Subscription.expires_at > now
    ).order_by(Subscription.expires_at.desc()).first()
    access_key = AudioAccessKey.query.filter(
        AudioAccessKey.redeemed_by_user_id == user_id,
        AudioAccessKey.expires_at > now
    ).order_by(AudioAccessKey.expires_at.desc()).first()

    plan_id = subscription.plan_id if subscription else (access_key.plan_id if access_key else None)
    expires_at = subscription.expires_at if subscription else (access_key.expires_at if access_key else None)
    return AccessGrant(subscription=subscription, access_key=access_key, plan_id=plan_id, expires_at=expires_at)


def can_stream(plan_id, required_plan):
    """Streaming gate: QUARTERLY reaches MONTHLY content only."""
    if required_plan is None: return True
    return (plan_id == required_plan
            or plan_id == SubscriptionPlanEnum.ANNUAL
            or (plan_id == SubscriptionPlanEnum.QUARTERLY and required_plan == SubscriptionPlanEnum.MONTHLY))


def can_access_in_library(audio, has_access, plan_id):
    """Library listing gate: QUARTERLY reaches everything except ANNUAL content."""
    if audio.is_preview: return True
    if not has_access: return False
    required = audio.required_plan
    return (required is None
            or required == plan_id
            or plan_id == SubscriptionPlanEnum.ANNUAL
            or (plan_id == SubscriptionPlanEnum.QUARTERLY and required != SubscriptionPlanEnum.ANNUAL))


def _advance(subscription, previous_renewal, now):
    new_renewal = period_end(previous_renewal, subscription.plan_id)
    if new_renewal <= now:
        # Overdue by more than a period: restart from the sweep time
        new_renewal = period_end(now, subscription.plan_id)
    stmt = (
        update(Subscription)
        .where(Subscription.id == subscription.id,
               Subscription.status == SubscriptionStatusEnum.ACTIVE,
               Subscription.next_renewal == previous_renewal)
        .values(expires_at=new_renewal, next_renewal=new_renewal, last_payment_date=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount


def renew_due_subscriptions(now=None):
    """
    Renewal sweep, meant to run from a single scheduled invocation.

    Each due subscription is advanced with a compare-and-set on the next_renewal
    value read at the start of the sweep, so a concurrent or repeated run cannot
    advance the same period twice. Failures mark the subscription EXPIRED. Any
    ACTIVE subscription whose expires_at has passed is then expired.
    """
    now = now or utcnow()
    stats = {"renewed": 0, "skipped": 0, "failed": 0, "expired": 0}

    due = Subscription.query.filter(
        Subscription.status == SubscriptionStatusEnum.ACTIVE,
        Subscription.auto_renew.is_(True),
        Subscription.next_renewal <= now
    ).all()
    due_snapshot = [(sub.id, sub.next_renewal) for sub in due]
    current_app.logger.info(f"Processing {len(due_snapshot)} subscription renewals")

    for subscription, (subscription_id, previous_renewal) in zip(due, due_snapshot):
        try:
            if _advance(subscription, previous_renewal, now) == 1:
                db.session.commit()
                stats["renewed"] += 1
                current_app.logger.info(f"Renewed subscription {subscription_id} for user {subscription.user_id}")
            else:
                db.session.rollback()
                stats["skipped"] += 1
                current_app.logger.info(f"Subscription {subscription_id} changed since it was read; renewal skipped")
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to renew subscription {subscription_id}: {e}", exc_info=True)
            db.session.execute(
                update(Subscription)
                .where(Subscription.id == subscription_id)
                .values(status=SubscriptionStatusEnum.EXPIRED, auto_renew=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
            stats["failed"] += 1

    result = db.session.execute(
        update(Subscription)
        .where(Subscription.status == SubscriptionStatusEnum.ACTIVE, Subscription.expires_at < now)
        .values(status=SubscriptionStatusEnum.EXPIRED, auto_renew=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    stats["expired"] = result.rowcount
    db.session.commit()
    db.session.expire_all()
    current_app.logger.info(f"Subscription renewal processing completed: {stats}")
    return stats


def subscription_analytics():
    counts = {status.value: Subscription.query.filter_by(status=status).count() for status in SubscriptionStatusEnum}
    plan_breakdown = {
        plan.value: Subscription.query.filter_by(status=SubscriptionStatusEnum.ACTIVE, plan_id=plan).count()
        for plan in SubscriptionPlanEnum
    }
    mrr = (plan_breakdown['MONTHLY'] * PLAN_PRICES[SubscriptionPlanEnum.MONTHLY]
           + plan_breakdown['QUARTERLY'] * PLAN_PRICES[SubscriptionPlanEnum.QUARTERLY] / 3
           + plan_breakdown['ANNUAL'] * PLAN_PRICES[SubscriptionPlanEnum.ANNUAL] / 12)
    return {
        "total_subscriptions": Subscription.query.count(),
        "active_subscriptions": counts['ACTIVE'],
        "paused_subscriptions": counts['PAUSED'],
        "cancelled_subscriptions": counts['CANCELLED'],
        "expired_subscriptions": counts['EXPIRED'],
        "plan_breakdown": plan_breakdown,
        "mrr": round(mrr),
        "arr": round(mrr * 12),
        "currency": current_app.config.get('SUBSCRIPTION_CURRENCY', 'CLP'),
    }
