from __future__ import annotations

import pytest

from db.models.ledger import KeywordStatus
from statement_pipeline.errors import KeywordNotFoundError
from statement_pipeline.events import CategorizeByKeywordEvent, ReassignKeywordEvent
from statement_pipeline.jobs import keyword_jobs, run_job
from statement_pipeline.jobs.keyword_jobs import (
    categorize_by_keyword_function,
    reassign_keyword_function,
)
from tests.helpers.db import (
    category_of,
    fetch_keyword,
    seed_category,
    seed_keyword,
    seed_transaction,
)

USER = "user-1"


@pytest.fixture
def cats(database_url: str) -> dict[str, str]:
    return {
        name: seed_category(database_url, user_id=USER, name=name)
        for name in ("Food", "Groceries", "Travel")
    }


def test_categorize_only_touches_uncategorized_matches(database_url: str, cats) -> None:
    kid = seed_keyword(
        database_url,
        user_id=USER,
        category_id=cats["Food"],
        keyword="Wong",
        status=KeywordStatus.CATEGORIZING,
    )
    hit = seed_transaction(database_url, user_id=USER, description="01/15 COMPRA WONG SURCO")
    by_merchant = seed_transaction(database_url, user_id=USER, description="POS 123", merchant="Wong")
    kept = seed_transaction(
        database_url, user_id=USER, description="WONG", category_id=cats["Travel"]
    )
    miss = seed_transaction(database_url, user_id=USER, description="TAMBO")
    other_user = seed_transaction(database_url, user_id="user-2", description="WONG")

    result = run_job(
        categorize_by_keyword_function,
        CategorizeByKeywordEvent(
            user_id=USER, keyword_id=kid, keyword="Wong", category_id=cats["Food"]
        ),
    )

    assert result.matched == 2
    assert result.categorized_count == 2
    assert result.failed_ids == ()
    assert category_of(database_url, hit) == cats["Food"]
    assert category_of(database_url, by_merchant) == cats["Food"]
    assert category_of(database_url, kept) == cats["Travel"]
    assert category_of(database_url, miss) is None
    assert category_of(database_url, other_user) is None

    kw = fetch_keyword(database_url, kid)
    assert kw.status == KeywordStatus.ACTIVE
    assert kw.categorized_count == 2


def test_reassign_moves_every_match_and_counts_changes(database_url: str, cats) -> None:
    kid = seed_keyword(
        database_url,
        user_id=USER,
        category_id=cats["Groceries"],
        keyword="wong",
        status=KeywordStatus.CATEGORIZING,
    )
    from_old = seed_transaction(
        database_url, user_id=USER, description="WONG 1", category_id=cats["Food"]
    )
    from_elsewhere = seed_transaction(
        database_url, user_id=USER, description="WONG 2", category_id=cats["Travel"]
    )
    uncategorized = seed_transaction(database_url, user_id=USER, description="WONG 3")
    already = seed_transaction(
        database_url, user_id=USER, description="WONG 4", category_id=cats["Groceries"]
    )

    result = run_job(
        reassign_keyword_function,
        ReassignKeywordEvent(
            user_id=USER,
            keyword_id=kid,
            keyword="wong",
            old_category_id=cats["Food"],
            new_category_id=cats["Groceries"],
        ),
    )

    assert result.matched == 4
    assert result.categorized_count == 3
    for tx in (from_old, from_elsewhere, uncategorized, already):
        assert category_of(database_url, tx) == cats["Groceries"]
    kw = fetch_keyword(database_url, kid)
    assert kw.status == KeywordStatus.ACTIVE
    assert kw.categorized_count == 3


def test_chunks_cover_all_matches(database_url: str, cats, monkeypatch) -> None:
    monkeypatch.setattr(keyword_jobs, "CHUNK_SIZE", 2)
    kid = seed_keyword(
        database_url,
        user_id=USER,
        category_id=cats["Food"],
        keyword="tambo",
        status=KeywordStatus.CATEGORIZING,
    )
    ids = [
        seed_transaction(database_url, user_id=USER, description=f"TAMBO {i}") for i in range(5)
    ]

    result = run_job(
        categorize_by_keyword_function,
        CategorizeByKeywordEvent(
            user_id=USER, keyword_id=kid, keyword="tambo", category_id=cats["Food"]
        ),
    )

    assert result.categorized_count == 5
    assert all(category_of(database_url, i) == cats["Food"] for i in ids)


def test_no_matches_still_activates(database_url: str, cats) -> None:
    kid = seed_keyword(
        database_url,
        user_id=USER,
        category_id=cats["Food"],
        keyword="pizza",
        status=KeywordStatus.CATEGORIZING,
    )
    seed_transaction(database_url, user_id=USER, description="TAMBO")

    result = run_job(
        categorize_by_keyword_function,
        CategorizeByKeywordEvent(
            user_id=USER, keyword_id=kid, keyword="pizza", category_id=cats["Food"]
        ),
    )

    assert result.categorized_count == 0
    kw = fetch_keyword(database_url, kid)
    assert kw.status == KeywordStatus.ACTIVE
    assert kw.categorized_count == 0


def test_missing_keyword_is_not_retried(database_url: str, cats, monkeypatch) -> None:
    calls: list[str] = []
    real_fetch = keyword_jobs.persistence.fetch_uncategorized_transactions
    monkeypatch.setattr(
        keyword_jobs.persistence,
        "fetch_uncategorized_transactions",
        lambda s, u: calls.append(u) or real_fetch(s, u),
    )

    with pytest.raises(KeywordNotFoundError):
        run_job(
            categorize_by_keyword_function,
            CategorizeByKeywordEvent(
                user_id=USER, keyword_id="missing", keyword="wong", category_id=cats["Food"]
            ),
        )
    assert calls == []


def test_persistent_failure_marks_keyword_failed(database_url: str, cats, monkeypatch) -> None:
    kid = seed_keyword(
        database_url,
        user_id=USER,
        category_id=cats["Food"],
        keyword="wong",
        status=KeywordStatus.CATEGORIZING,
    )
    attempts: list[int] = []

    def _flaky(_s, _user_id):
        attempts.append(1)
        raise RuntimeError("read replica lag")

    monkeypatch.setattr(keyword_jobs.persistence, "fetch_uncategorized_transactions", _flaky)

    with pytest.raises(RuntimeError):
        run_job(
            categorize_by_keyword_function,
            CategorizeByKeywordEvent(
                user_id=USER, keyword_id=kid, keyword="wong", category_id=cats["Food"]
            ),
        )

    assert len(attempts) == 3
    kw = fetch_keyword(database_url, kid)
    assert kw.status == KeywordStatus.FAILED
    assert kw.failure_reason == "read replica lag"


@pytest.mark.parametrize("status", [KeywordStatus.ACTIVE, KeywordStatus.FAILED])
def test_redelivered_event_for_finished_keyword_is_a_no_op(
    database_url: str, cats, status: KeywordStatus
) -> None:
    kid = seed_keyword(
        database_url, user_id=USER, category_id=cats["Food"], keyword="wong", status=status
    )
    tx = seed_transaction(database_url, user_id=USER, description="COMPRA WONG")

    result = run_job(
        categorize_by_keyword_function,
        CategorizeByKeywordEvent(
            user_id=USER, keyword_id=kid, keyword="wong", category_id=cats["Food"]
        ),
    )

    assert result.matched == 0
    assert result.categorized_count == 0
    assert category_of(database_url, tx) is None
    assert fetch_keyword(database_url, kid).status == status
