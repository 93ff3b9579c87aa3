"""Factories for generating demo/test data with factory_boy and Faker.

Use sequences for unique identifiers and Faker for descriptive fields.
"""

import factory
from django.contrib.auth import get_user_model
from factory import Faker
from factory.django import DjangoModelFactory

from accounts.models import Organisation

from . import models


class OrganisationFactory(DjangoModelFactory):
    class Meta:
        model = Organisation
        django_get_or_create = ("slug",)

    name = Faker("company")
    slug = factory.Sequence(lambda n: f"org-{n}")
    order_prefix = ""


class UserFactory(DjangoModelFactory):
    class Meta:
        model = get_user_model()
        django_get_or_create = ("username",)

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda obj: f"{obj.username}@example.com")
    first_name = Faker("first_name")
    last_name = Faker("last_name")
    org = factory.SubFactory(OrganisationFactory)
    role = "office"
    is_active = True

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        password = kwargs.pop("password", "password123")
        user = super()._create(model_class, *args, **kwargs)
        user.set_password(password)
        user.save()
        return user


class DriverFactory(UserFactory):
    username = factory.Sequence(lambda n: f"driver{n}")
    role = "driver"
    phone = factory.Sequence(lambda n: f"+44770090{n % 10000:04d}")


class JobFactory(DjangoModelFactory):
    class Meta:
        model = models.Job

    org = factory.SubFactory(OrganisationFactory)
    order_number = factory.Sequence(lambda n: f"JOB-{n:04d}")
    status = models.Job.Status.PLANNED
    created_by = factory.SubFactory(UserFactory, org=factory.SelfAttribute("..org"))
    price = None
    notes = None


class JobStopFactory(DjangoModelFactory):
    class Meta:
        model = models.JobStop

    job = factory.SubFactory(JobFactory)
    org = factory.SelfAttribute("job.org")
    type = models.JobStop.StopType.COLLECTION
    seq = factory.Sequence(lambda n: n + 1)
    name = Faker("company")
    address_line1 = Faker("street_address")
    address_line2 = ""
    city = Faker("city")
    postcode = Faker("bothify", text="??# #??")
    notes = ""


class DocumentFactory(DjangoModelFactory):
    class Meta:
        model = models.Document

    job = factory.SubFactory(JobFactory)
    org = factory.SelfAttribute("job.org")
    type = models.Document.DocumentType.PAPERWORK
    file = factory.django.FileField(filename="paperwork.pdf")
    original_filename = "paperwork.pdf"
