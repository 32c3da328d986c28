"""
Root pytest configuration for the settlement engine.

pytest-django reads DJANGO_SETTINGS_MODULE from pyproject.toml. This
module adjusts settings for tests and provides project-wide fixtures.
Settlement fixtures (users, a 60/40 project, in-memory ports and an
engine wired to them) are shared by every app and live here.
"""

import os

import pytest

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Adjust settings before tests run."""
    from django.conf import settings

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # Nothing in tests talks to a real Redis; locks use the mock_redis fixture
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    }


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full settlement flow)
    - test_views.py, test_services.py, test_tasks.py, etc. → integration
    - test_calculator.py, test_backoff.py, test_registry.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_reconciler.py",
        "test_escrow_ledger.py",
        "test_payout_scheduler.py",
        "test_payout_executor.py",
        "test_runner.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_calculator.py",
        "test_policies.py",
        "test_backoff.py",
        "test_registry.py",
        "test_locks.py",
        "test_idempotency.py",
        "test_exception_handler.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Redis
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """
    Mock Redis client behind core.locks.DistributedLock.

    Every lock is acquired and released successfully unless a test
    changes the return values.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1
    mock_client.ping.return_value = True

    mocker.patch("core.locks.get_redis_connection", return_value=mock_client)
    return mock_client


# =============================================================================
# API Clients
# =============================================================================


@pytest.fixture
def api_client():
    from rest_framework.test import APIClient

    return APIClient()


# =============================================================================
# Settlement Fixtures
# =============================================================================


@pytest.fixture
def owner(db):
    """Project owner who funds and approves milestones."""
    from projects.tests.factories import UserFactory

    return UserFactory(username="owner")


@pytest.fixture
def alice(db):
    from projects.tests.factories import UserFactory

    return UserFactory(username="alice")


@pytest.fixture
def bob(db):
    from projects.tests.factories import UserFactory

    return UserFactory(username="bob")


@pytest.fixture
def project(db, owner, alice, bob):
    """Project with alice and bob as members splitting revenue 60/40."""
    from decimal import Decimal

    from projects.tests.factories import (
        ProjectFactory,
        ProjectMemberFactory,
        RevenueSplitFactory,
    )

    project = ProjectFactory(owner=owner)
    ProjectMemberFactory(project=project, user=alice, payout_account_id="acct_alice")
    ProjectMemberFactory(project=project, user=bob, payout_account_id="acct_bob")
    RevenueSplitFactory(project=project, recipient=alice, percentage=Decimal("60"), position=0)
    RevenueSplitFactory(project=project, recipient=bob, percentage=Decimal("40"), position=1)
    return project


@pytest.fixture
def milestone(db, project):
    from projects.tests.factories import MilestoneFactory

    return MilestoneFactory(project=project, amount_cents=10000)


@pytest.fixture
def gateway():
    from payments.tests.fakes import FakeGateway

    return FakeGateway()


@pytest.fixture
def events():
    from payments.tests.fakes import RecordingEvents

    return RecordingEvents()


@pytest.fixture
def notifier():
    from payments.tests.fakes import RecordingNotifier

    return RecordingNotifier()


@pytest.fixture
def job_queue():
    from payments.tests.fakes import RecordingJobQueue

    return RecordingJobQueue()


@pytest.fixture
def engine(gateway, job_queue, events, notifier):
    """SettlementEngine wired to in-memory fakes."""
    from payments.engine import SettlementEngine

    return SettlementEngine(
        gateways={"fake": gateway},
        job_queue=job_queue,
        events=events,
        notifier=notifier,
    )


@pytest.fixture
def succeeded_transaction(db, milestone):
    from payments.state_machines import TransactionStatus
    from payments.tests.factories import PaymentTransactionFactory

    return PaymentTransactionFactory(milestone=milestone, status=TransactionStatus.SUCCEEDED)


@pytest.fixture
def funded_milestone(db, engine, milestone, succeeded_transaction):
    """Milestone in FUNDED with a LOCKED escrow."""
    from projects.models import Milestone

    engine.milestone_service.fund(milestone.pk, succeeded_transaction)
    return Milestone.objects.get(pk=milestone.pk)


@pytest.fixture
def completed_milestone(db, engine, funded_milestone, alice):
    from projects.models import Milestone

    engine.milestone_service.complete(funded_milestone.pk, actor=alice)
    return Milestone.objects.get(pk=funded_milestone.pk)
