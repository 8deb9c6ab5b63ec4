from datetime import date
from decimal import Decimal

import pytest

from collection_ledger.data_models import WEEKLY, Client
from collection_ledger.ledger import CreditLedger
from collection_ledger.schedule import create_credit
from collection_ledger_store.ledger_store import LedgerStore

START = date(2024, 1, 1)


def weekly(credit_id="c1", client_id="k1", value="100000", start=START):
    return create_credit(credit_id, client_id, Decimal("800000"), Decimal(value), WEEKLY, start)


@pytest.fixture
def credit():
    return weekly()


@pytest.fixture
def ledger():
    return CreditLedger(credit_id="c1")


@pytest.fixture
def store():
    return LedgerStore("sqlite://")


@pytest.fixture
def seeded_store(store):
    for client_id, name in (("k1", "Ana"), ("k2", "Bruno"), ("k3", "Carla")):
        store.add_client(Client(id=client_id, name=name))
    for n in (1, 2, 3):
        store.add_credit(weekly(credit_id=f"c{n}", client_id=f"k{n}"))
    return store
