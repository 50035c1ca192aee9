from datetime import datetime, timedelta, timezone
from decimal import Decimal

from drawledger.db.engine import get_sessionmaker, make_engine
from drawledger.ledger import balance
from drawledger.models import Base, LedgerTransaction
from drawledger.workflows import activate_draw, create_draw, register_user


def main() -> None:
    """Reset the development database and fill it with sample data."""
    engine = make_engine()

    Base.metadata.drop_all(engine)

    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)
    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        admin = register_user(session, "admin@example.com", role="ADMIN")
        alice = register_user(session, "alice@example.com")
        bob = register_user(session, "bob@example.com", referral_code=alice.referral_code)

        for user, amount in ((alice, Decimal("50")), (bob, Decimal("20"))):
            balance.credit(session, user.wallet.id, amount)
            session.add(
                LedgerTransaction(
                    user_id=user.id,
                    type="DEPOSIT",
                    status="COMPLETED",
                    amount=amount,
                    credited_amount=amount,
                    description="Seed deposit",
                )
            )

        weekly = create_draw(
            session,
            title="Weekly Draw",
            entry_price=Decimal("1"),
            draw_date=now + timedelta(days=7),
            prizes=[Decimal("25"), Decimal("10"), Decimal("5")],
            max_entries=1000,
        )
        activate_draw(session, weekly.id)
        create_draw(
            session,
            title="Monthly Draw",
            entry_price=Decimal("2"),
            draw_date=now + timedelta(days=30),
            prizes=[Decimal("100")],
        )

    print(f"Seeded admin id={admin.id}, users {alice.id} and {bob.id}, draw {weekly.id}")


if __name__ == "__main__":
    main()
