"""
Models and subscribers used across the test suite.
"""

from datetime import datetime, timedelta

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from reactor import Mailer, Publishable


class Base(DeclarativeBase):
    pass


class Pet(Base, Publishable):
    __tablename__ = "pets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), default="Fido")
    awesomeness: Mapped[int] = mapped_column(Integer, default=10)


class Publisher(Base, Publishable):
    __tablename__ = "publishers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pet_id: Mapped[int | None] = mapped_column(ForeignKey("pets.id"), nullable=True)
    should_run: Mapped[bool] = mapped_column(Boolean, default=True)
    watched_column: Mapped[str | None] = mapped_column(String(50), nullable=True)
    run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    pet: Mapped[Pet | None] = relationship()

    def should_run_now(self):
        return self.should_run


Publisher.publishes("publish_on_create")
Publisher.publishes("publish_on_create_with_at_lambda", at=lambda p: p.run_at)
Publisher.publishes("publish_on_create_with_at_function", at="run_at")
Publisher.publishes("publish_on_create_if_lambda", if_=lambda p: p.should_run)
Publisher.publishes("publish_on_create_if_function", if_="should_run_now")
Publisher.publishes("publish_on_create_if_enqueue_lambda", enqueue_if=lambda p: p.should_run)
Publisher.publishes("publish_on_create_if_enqueue_function", enqueue_if="should_run_now")
Publisher.publishes("publish_on_update", watch="watched_column")
Publisher.publishes("publish_on_update_if_function", watch="watched_column", if_="should_run_now")
Publisher.publishes("publish_on_update_if_enqueue_lambda", watch="watched_column", enqueue_if=lambda p: p.should_run)
Publisher.publishes("publish_with_pet_actor", actor="pet", target=True, enqueue_if=lambda p: p.pet is not None)


class Auction(Base, Publishable):
    __tablename__ = "auctions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="pending")
    start_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    lead_minutes: Mapped[int] = mapped_column(Integer, default=0)

    @property
    def reminder_at(self):
        if self.start_at is None:
            return None
        return self.start_at - timedelta(minutes=self.lead_minutes)

    @classmethod
    def ring_bell(cls, event):
        return f"ring ring! {event}"

    @classmethod
    def pick_up_poop(cls, event):
        return f"poop picked up after {event}"


Auction.publishes("begin", at="start_at", watch="start_at", additional_info="curry was here")
Auction.publishes("remind", at="reminder_at", watch="start_at")
Auction.publishes("opened", target=True)


class Order(Base, Publishable):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    pet_id: Mapped[int | None] = mapped_column(ForeignKey("pets.id"), nullable=True)

    @classmethod
    def ring_bell(cls, event):
        return f"ring ring! {event}"


Order.publishes("shipped", watch="status")


class KittenMailer(Mailer):
    default_from = "test@kittens.com"

    def kitten_livestream(self, event):
        self.mail(
            to="admin@kittens.com",
            subject="Livestreaming kitten videos",
            body="Your favorite kittens are now live!",
        )

    def stay_quiet(self, event):
        return None
