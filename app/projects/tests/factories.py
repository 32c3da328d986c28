"""
Factory Boy factories for project test data.

Usage:
    from projects.tests.factories import MilestoneFactory, ProjectFactory

    project = ProjectFactory()
    milestone = MilestoneFactory(project=project, amount_cents=10000)

    # Project with two contributors splitting 60/40
    project = ProjectFactory()
    RevenueSplitFactory(project=project, recipient=alice, percentage=Decimal("60"))
    RevenueSplitFactory(project=project, recipient=bob, percentage=Decimal("40"), position=1)
"""

from decimal import Decimal

import factory
from django.conf import settings

from projects.models import MemberRole, Milestone, Project, ProjectMember, RevenueSplit


class UserFactory(factory.django.DjangoModelFactory):
    """Factory for the configured user model."""

    class Meta:
        model = settings.AUTH_USER_MODEL
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")


class ProjectFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Project

    owner = factory.SubFactory(UserFactory)
    title = factory.Sequence(lambda n: f"Project {n}")
    currency = "usd"


class ProjectMemberFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ProjectMember

    project = factory.SubFactory(ProjectFactory)
    user = factory.SubFactory(UserFactory)
    role = MemberRole.MEMBER
    payout_account_id = factory.Sequence(lambda n: f"acct_test{n:04d}")


class RevenueSplitFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = RevenueSplit

    project = factory.SubFactory(ProjectFactory)
    recipient = factory.SubFactory(UserFactory)
    percentage = Decimal("100")
    position = 0
    is_active = True


class MilestoneFactory(factory.django.DjangoModelFactory):
    """
    Factory for Milestone.

    status is protected by django-fsm; pass it to the factory (which uses
    objects.create) rather than assigning it afterwards.
    """

    class Meta:
        model = Milestone

    project = factory.SubFactory(ProjectFactory)
    title = factory.Sequence(lambda n: f"Milestone {n}")
    amount_cents = 10000
    currency = "usd"


__all__ = [
    "MilestoneFactory",
    "ProjectFactory",
    "ProjectMemberFactory",
    "RevenueSplitFactory",
    "UserFactory",
]
