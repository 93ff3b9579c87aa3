"""Seed a demo organisation with staff, drivers and a handful of jobs."""

import random

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from factory import random as factory_random
from faker import Faker

from haulage import factories
from haulage.models import JobStop
from haulage.services.job_creation import create_job
from haulage.services.progress import apply_progress_update
from haulage.services.status_flow import MANUAL_PROGRESS_STATUSES


class Command(BaseCommand):
    help = "Seed a demo organisation with admin, office, drivers and jobs"

    def add_arguments(self, parser):
        parser.add_argument("--org", default="demo-haulage")
        parser.add_argument("--drivers", type=int, default=3)
        parser.add_argument("--jobs", type=int, default=8)
        parser.add_argument(
            "--seed", type=int, default=None, help="Seed for Faker/random"
        )

    @transaction.atomic
    def handle(self, *args, **options):
        seed = options.get("seed")
        if seed is not None:
            random.seed(seed)
            factory_random.reseed_random(seed)
            Faker.seed(seed)
            self.stdout.write(self.style.NOTICE(f"Seeding randomness with seed={seed}"))

        fake = Faker("en_GB")
        org = factories.OrganisationFactory(slug=options["org"], name="Demo Haulage")
        admin = factories.UserFactory(
            username="admin", org=org, role="admin", is_staff=True
        )
        office = factories.UserFactory(username="office", org=org, role="office")
        drivers = [
            factories.DriverFactory(username=f"driver{i}", org=org)
            for i in range(1, options["drivers"] + 1)
        ]
        self.stdout.write(
            self.style.SUCCESS(
                f"Using users: {admin.username}, {office.username}, "
                f"{', '.join(d.username for d in drivers)}"
            )
        )

        self.stdout.write("Creating jobs...")
        happy_path = list(MANUAL_PROGRESS_STATUSES)
        created = []
        for _ in range(options["jobs"]):
            driver = random.choice(drivers + [None]) if drivers else None
            stops = [
                self._stop(fake, JobStop.StopType.COLLECTION),
                self._stop(fake, JobStop.StopType.DELIVERY),
            ]
            if random.random() < 0.3:
                stops.append(self._stop(fake, JobStop.StopType.DELIVERY))
            job = create_job(
                org,
                office,
                {
                    "assigned_driver_id": driver.pk if driver else None,
                    "price": f"{random.randint(150, 1200)}.00",
                    "collection_date": timezone.localdate(),
                },
                stops,
            )
            if driver and random.random() < 0.6:
                target = random.choice(happy_path)
                apply_progress_update(job, target, timezone.now(), office)
            created.append(job)

        self.stdout.write(self.style.SUCCESS("Seed complete."))
        self.stdout.write(
            self.style.SUCCESS(
                f"Organisation: {org.slug}, Drivers: {len(drivers)}, Jobs: {len(created)}"
            )
        )

    def _stop(self, fake, stop_type):
        return {
            "type": stop_type,
            "name": fake.company(),
            "address_line1": fake.street_address(),
            "city": fake.city(),
            "postcode": fake.postcode(),
            "window_from": "08:00",
            "window_to": "17:00",
        }
