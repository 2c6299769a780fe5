import pytest

from files_ingest.database.local import insert_file
from files_ingest.services.quota import QuotaLedger


@pytest.fixture
def ledger(db_path):
    return QuotaLedger(db_path)


def test_storage_quota_denies_overflow(ledger, make_user, db_path):
    user = make_user("carol", storage_quota_bytes=1000, files_quota=10)
    insert_file("f1", user.id, "big.bin", "key-1", 900, db_path=db_path)

    denied = ledger.check_admission(user, 200)
    assert denied.allowed is False
    assert denied.reason == "Storage quota exceeded"

    assert ledger.check_admission(user, 50).allowed is True


def test_storage_quota_allows_exact_fit(ledger, make_user, db_path):
    user = make_user("carol", storage_quota_bytes=1000, files_quota=10)
    insert_file("f1", user.id, "big.bin", "key-1", 900, db_path=db_path)

    assert ledger.check_admission(user, 100).allowed is True


def test_files_quota_denies_one_more_file(ledger, make_user, db_path):
    user = make_user("carol", storage_quota_bytes=10_000, files_quota=2)
    insert_file("f1", user.id, "a.txt", "key-1", 1, db_path=db_path)
    insert_file("f2", user.id, "b.txt", "key-2", 1, db_path=db_path)

    decision = ledger.check_admission(user, 1)
    assert decision.allowed is False
    assert decision.reason == "Files quota exceeded"


def test_usage_is_per_user(ledger, make_user, db_path):
    carol = make_user("carol", storage_quota_bytes=1000, files_quota=10)
    dave = make_user("dave", storage_quota_bytes=1000, files_quota=10)
    insert_file("f1", carol.id, "a.txt", "key-1", 990, db_path=db_path)

    assert ledger.usage(dave) == (0, 0)
    assert ledger.check_admission(dave, 1000).allowed is True
