import logging

from sqlmodel import Session, select

from .clock import Clock
from .errors import NotFound
from .ledger import Ledger
from .models import RedemptionLog, ShopItem, User
from .schemas import RedemptionLogRead, RedemptionRead, ShopItemRead

logger = logging.getLogger(__name__)


class RedemptionEngine:
    def __init__(self, session: Session, ledger: Ledger, clock: Clock):
        self.session = session
        self.ledger = ledger
        self.clock = clock

    def redeem_item(self, item_id: int, acting_user: User) -> RedemptionRead:
        """Spend points on a catalog item.

        The debit and the redemption log commit together or not at all. The
        balance check happens inside the ledger's conditional decrement, never
        against a balance read earlier in the request.
        """
        item = self.session.get(ShopItem, item_id)
        if not item or not item.available:
            raise NotFound("Item not found")

        with self.ledger.locked(acting_user.id):
            try:
                now = self.clock.now()
                entry = self.ledger.debit(acting_user.id, item.points_cost, item=item)
                log = RedemptionLog(
                    user_id=acting_user.id,
                    shop_item_id=item.id,
                    item_name=item.name,
                    points_spent=item.points_cost,
                    redeemed_at=now,
                )
                self.session.add(log)
                self.session.flush()
                result = RedemptionRead(
                    item=ShopItemRead.model_validate(item),
                    points_spent=item.points_cost,
                    balance=entry.balance_after,
                    redemption=RedemptionLogRead.model_validate(log),
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        logger.info(
            "user %s redeemed item %s for %s points, balance %s",
            acting_user.id,
            result.item.id,
            result.points_spent,
            result.balance,
        )
        return result

    def available_items(self) -> list[ShopItem]:
        return list(
            self.session.exec(
                select(ShopItem).where(ShopItem.available == True).order_by(ShopItem.points_cost)  # noqa: E712
            ).all()
        )

    def all_items(self) -> list[ShopItem]:
        return list(self.session.exec(select(ShopItem).order_by(ShopItem.id)).all())

    def redemption_history_for(self, user: User, page: int = 1, size: int = 20) -> list[RedemptionLog]:
        return list(
            self.session.exec(
                select(RedemptionLog)
                .where(RedemptionLog.user_id == user.id)
                .order_by(RedemptionLog.redeemed_at.desc(), RedemptionLog.id.desc())
                .offset((page - 1) * size)
                .limit(size)
            ).all()
        )
