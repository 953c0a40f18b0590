"""
Data repair helpers behind the admin diagnostic page and the scripts/ tools.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlmodel import Session, delete, select, update

from ..models.challenge import Challenge
from ..models.customization import CustomizationSettings
from ..models.participant import Participant
from ..models.photo import Photo
from ..models.submission import Submission
from .shopify import ShopifyAdminClient

logger = logging.getLogger(__name__)

SHOP_SCOPED_TABLES = {
    "challenges": Challenge,
    "participants": Participant,
    "submissions": Submission,
    "photos": Photo,
    "settings": CustomizationSettings,
}


def shop_domain_stats(session: Session, shops: Optional[Iterable[str]] = None) -> Dict[str, object]:
    """Counts challenge, participant and submission rows per shop domain.

    More than one domain in a single-store deployment usually means records
    were written under a test store's domain. ``shops`` limits the report to
    those domains; None reports every domain in the database.
    """
    shops = None if shops is None else list(shops)
    counts: Dict[str, Dict[str, int]] = {}
    for label in ("challenges", "participants", "submissions"):
        model = SHOP_SCOPED_TABLES[label]
        query = select(model.shop, func.count()).group_by(model.shop)
        if shops is not None:
            query = query.where(model.shop.in_(shops))
        for shop, count in session.exec(query).all():
            counts.setdefault(shop, {"challenges": 0, "participants": 0, "submissions": 0})[label] = count

    stats = [{"shop": shop, **values} for shop, values in sorted(counts.items())]
    return {"shops": stats, "has_mismatch": len(stats) > 1}


def list_challenges_by_shop(session: Session, shops: Optional[Iterable[str]] = None) -> List[dict]:
    query = (
        select(Challenge, func.count(Participant.participant_id))
        .outerjoin(Participant, Participant.challenge_id == Challenge.challenge_id)
        .group_by(Challenge.challenge_id)
        .order_by(Challenge.shop, Challenge.start_date.desc())
    )
    if shops is not None:
        query = query.where(Challenge.shop.in_(list(shops)))

    return [
        {
            "challenge_id": challenge.challenge_id,
            "shop": challenge.shop,
            "name": challenge.name,
            "is_active": challenge.is_active,
            "start_date": challenge.start_date,
            "end_date": challenge.end_date,
            "participants": participant_count,
        }
        for challenge, participant_count in session.exec(query).all()
    ]


def migrate_shop_domain(session: Session, old_shop: str, new_shop: str) -> Dict[str, int]:
    """Moves every row written under ``old_shop`` to ``new_shop`` in one transaction.

    Settings are one row per shop. When the target shop already has its own,
    those are kept and the old shop's row is deleted and counted under
    ``settings_discarded``.
    """
    if not old_shop or not new_shop:
        raise ValueError("Both the old and the new shop domain are required")
    if old_shop == new_shop:
        raise ValueError("Old and new shop domains are the same")

    result: Dict[str, int] = {}
    try:
        for label, model in SHOP_SCOPED_TABLES.items():
            if model is CustomizationSettings and session.exec(
                select(CustomizationSettings.id).where(CustomizationSettings.shop == new_shop)
            ).first() is not None:
                outcome = session.exec(
                    delete(CustomizationSettings).where(CustomizationSettings.shop == old_shop)
                )
                result[label] = 0
                result["settings_discarded"] = outcome.rowcount
                continue

            outcome = session.exec(
                update(model).where(model.shop == old_shop).values(shop=new_shop)
            )
            result[label] = outcome.rowcount
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Migrated shop domain %s -> %s: %s", old_shop, new_shop, result)
    return result


def participants_missing_order_data(session: Session, shop: str) -> List[Participant]:
    return session.exec(
        select(Participant).where(
            (Participant.shop == shop) &
            (Participant.orders_count.is_(None) | Participant.total_spent.is_(None))
        )
    ).all()


def backfill_order_data(session: Session, shop: str, client: ShopifyAdminClient) -> Dict[str, int]:
    participants = participants_missing_order_data(session, shop)
    stats = {"updated": 0, "failed": 0, "skipped": 0, "total": len(participants)}

    for participant in participants:
        # Anonymous participants have no Shopify customer to query
        if not participant.customer_id or participant.customer_id.startswith("email:"):
            logger.info("Skipping %s - no Shopify customer ID", participant.email)
            stats["skipped"] += 1
            continue

        order_stats = client.get_customer_order_stats(shop, participant.customer_id)
        if order_stats is None:
            logger.warning("Customer not found in Shopify for %s", participant.email)
            stats["failed"] += 1
            continue

        participant.orders_count, participant.total_spent = order_stats
        session.add(participant)
        session.commit()
        logger.info(
            "Updated %s: %s orders, $%.2f spent",
            participant.email, participant.orders_count, participant.total_spent
        )
        stats["updated"] += 1

    return stats
