from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.utils import timezone

from modules.orders.constants import OrderStatus, PaymentStatus
from modules.orders.models import Order, Payment
from modules.orders.repositories.django_repository import OrderDjangoRepository

SEED_MARKER = "Seed order"

# (label, age, order status, payment status, pickup offset in days)
SEED_ORDERS = [
    ("fresh", timedelta(hours=1), OrderStatus.PENDING, PaymentStatus.PENDING, 3),
    ("reminder window", timedelta(hours=23, minutes=15), OrderStatus.PENDING, PaymentStatus.PENDING, 3),
    ("warning window", timedelta(hours=23, minutes=45), OrderStatus.PENDING, PaymentStatus.PENDING, 3),
    ("expired", timedelta(hours=25), OrderStatus.PENDING, PaymentStatus.PENDING, 3),
    ("pickup tomorrow", timedelta(days=2), OrderStatus.CONFIRMED, PaymentStatus.PAID, 1),
    ("preparing", timedelta(days=2), OrderStatus.PROCESSING, PaymentStatus.PAID, 0),
    ("pickup today", timedelta(days=3), OrderStatus.READY, PaymentStatus.PAID, 0),
]


class Command(BaseCommand):
    help = "Seed the database with orders spread over every sweep window."

    def handle(self, *args, **options):
        self.stdout.write("Seeding development data...")

        users_created = self._seed_users()
        orders_created = self._seed_orders()

        self.stdout.write(
            self.style.SUCCESS(
                f"Seed completed: users={users_created}, orders={orders_created}"
            )
        )

    def _seed_users(self) -> int:
        User = get_user_model()
        created = 0
        if not User.objects.filter(username="admin").exists():
            User.objects.create_superuser("admin", password="admin123")
            created += 1
        if not User.objects.filter(username="operator").exists():
            User.objects.create_user("operator", password="operator123", is_staff=True)
            created += 1
        if not User.objects.filter(username="customer").exists():
            User.objects.create_user(
                "customer", email="customer@example.com", password="customer123"
            )
            created += 1
        return created

    def _seed_orders(self) -> int:
        self.stdout.write("Creating orders...")
        customer = get_user_model().objects.get(username="customer")
        repository = OrderDjangoRepository()
        now = timezone.now()
        today = timezone.localdate(now)
        created = 0

        for label, age, order_status, payment_status, pickup_offset in SEED_ORDERS:
            notes = f"{SEED_MARKER}: {label}"
            if Order.objects.filter(notes=notes).exists():
                continue
            order = repository.create(
                {
                    "user_id": customer.pk,
                    "subtotal_amount": Decimal("235000.00"),
                    "service_fee": Decimal("25000.00"),
                    "pickup_date": today + timedelta(days=pickup_offset),
                    "notes": notes,
                }
            )
            # Seed rows are placed directly in their window, bypassing the engine.
            Order.objects.filter(id=order.id).update(
                created_at=now - age, order_status=order_status
            )
            Payment.objects.filter(order_id=order.id).update(status=payment_status)
            created += 1

        self.stdout.write(self.style.SUCCESS("Creating orders... Done!"))
        return created
