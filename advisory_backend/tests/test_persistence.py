from datetime import date
from decimal import Decimal

import pytest
from sqlmodel import Session, select

from advisory_backend.exceptions import PersistenceFailure
from advisory_backend.models import Account, BalanceRecord, PortfolioType, User, UserRole
from advisory_backend.persistence import DirectStage, PersistenceCoordinator, PersistencePath, TransactionalStage
from advisory_backend.reconciler import CustomerRow, EntityReconciler, prepare_customer_rows
from advisory_backend.roles import RoleAssignments
from advisory_backend.spreadsheet import parse_spreadsheet
from advisory_backend.stores import DirectEntityStore, OrmEntityStore

RECORD_DATE = date(2024, 3, 31)


def customer_row(row_number, email, account_number, balance="1000", name="Kim", portfolio="Growth"):
    return CustomerRow(
        row_number=row_number,
        name=name,
        email=email,
        account_number=account_number,
        portfolio_name=portfolio,
        balance=Decimal(balance),
    )


def reconcile_with(coordinator, rows, roles=None):
    reconciler = EntityReconciler(roles or RoleAssignments())
    return coordinator.persist(rows, lambda store, row: reconciler.reconcile(store, row, RECORD_DATE))


def test_prepare_rows_skips_incomplete_rows(make_workbook):
    data = make_workbook(
        ["이름", "이메일", "계좌번호", "포트폴리오명", "말일잔고", "계약일"],
        [
            ["Kim", "Kim@X.com ", "111-222-333", "Growth", 5000000, 45382],
            ["Lee", "lee@x.com", None, "Growth", 100, None],
            ["Park", "park@x.com", "444", "Income", "abc", None],
            ["Choi", "choi@x.com", 555666, "Income", 0, "2023.01.05"],
        ],
    )
    rows, skipped = prepare_customer_rows(parse_spreadsheet(data))

    assert [row.account_number for row in rows] == ["111-222-333", "555666"]
    assert rows[0].email == "kim@x.com"
    assert rows[0].contract_date == date(2024, 3, 31)
    assert rows[1].balance == Decimal("0")
    assert rows[1].contract_date == date(2023, 1, 5)
    assert [(item.row_number, item.reason) for item in skipped] == [
        (3, "missing account_number"),
        (4, "invalid end_of_period_balance"),
    ]


def test_reconcile_creates_then_reuses_entities(engine):
    coordinator = PersistenceCoordinator(TransactionalStage(engine), DirectStage(engine))
    rows = [customer_row(2, "kim@x.com", "111"), customer_row(3, "kim@x.com", "222", balance="250.50")]

    first = reconcile_with(coordinator, rows)
    second = reconcile_with(coordinator, rows)

    assert first.path is PersistencePath.TRANSACTIONAL
    assert second.path is PersistencePath.TRANSACTIONAL
    assert first.results[0].user.id == first.results[1].user.id
    assert second.results[0].account.id == first.results[0].account.id
    with Session(engine) as session:
        assert len(session.exec(select(User)).all()) == 1
        assert len(session.exec(select(Account)).all()) == 2
        assert len(session.exec(select(BalanceRecord)).all()) == 4


def test_email_match_is_case_insensitive(engine):
    with Session(engine) as session:
        session.add(User(email="Kim@X.com", name="Kim", role=UserRole.CUSTOMER))
        session.commit()
    coordinator = PersistenceCoordinator(TransactionalStage(engine), DirectStage(engine))

    reconcile_with(coordinator, [customer_row(2, "kim@x.com", "111")])

    with Session(engine) as session:
        assert len(session.exec(select(User)).all()) == 1


def test_role_comes_from_configured_assignments(engine):
    roles = RoleAssignments(assignments={"ops@firm.com": UserRole.ADMIN})
    coordinator = PersistenceCoordinator(TransactionalStage(engine), DirectStage(engine))

    reconcile_with(coordinator, [customer_row(2, "ops@firm.com", "1"), customer_row(3, "kim@x.com", "2")], roles)

    with Session(engine) as session:
        users = {user.email: user.role for user in session.exec(select(User)).all()}
    assert users == {"ops@firm.com": UserRole.ADMIN, "kim@x.com": UserRole.CUSTOMER}


def test_portfolio_type_is_resolved_when_known(engine):
    with Session(engine) as session:
        session.add(PortfolioType(name="Growth", category="equity", risk_level=4))
        session.commit()
    coordinator = PersistenceCoordinator(TransactionalStage(engine), DirectStage(engine))

    reconcile_with(coordinator, [customer_row(2, "a@x.com", "1"), customer_row(3, "b@x.com", "2", portfolio="Unknown")])

    with Session(engine) as session:
        accounts = {acc.account_number: acc for acc in session.exec(select(Account)).all()}
    assert accounts["1"].portfolio_type_id is not None
    assert accounts["2"].portfolio_type == "Unknown"
    assert accounts["2"].portfolio_type_id is None


def test_existing_account_keeps_its_owner(engine):
    coordinator = PersistenceCoordinator(TransactionalStage(engine), DirectStage(engine))
    reconcile_with(coordinator, [customer_row(2, "kim@x.com", "111")])

    outcome = reconcile_with(coordinator, [customer_row(2, "lee@x.com", "111", name="Lee")])

    with Session(engine) as session:
        kim = session.exec(select(User).where(User.email == "kim@x.com")).one()
        account = session.exec(select(Account)).one()
    assert account.user_id == kim.id
    assert outcome.results[0].account.user_id == kim.id


def test_transactional_failure_falls_back_to_direct_path(engine, broken_engine):
    coordinator = PersistenceCoordinator(TransactionalStage(broken_engine), DirectStage(engine))

    outcome = reconcile_with(coordinator, [customer_row(2, "kim@x.com", "111", balance="5000000")])

    assert outcome.path is PersistencePath.DIRECT
    assert outcome.fallback_reason
    assert not outcome.failures
    with Session(engine) as session:
        record = session.exec(select(BalanceRecord)).one()
    assert record.balance == Decimal("5000000")
    assert record.record_date == RECORD_DATE


def test_direct_path_skips_failing_rows(engine, broken_engine, monkeypatch):
    original = DirectEntityStore.create_account

    def create_account(self, **kwargs):
        if kwargs["account_number"] == "bad":
            raise RuntimeError("account insert rejected")
        return original(self, **kwargs)

    monkeypatch.setattr(DirectEntityStore, "create_account", create_account)
    coordinator = PersistenceCoordinator(TransactionalStage(broken_engine), DirectStage(engine))
    rows = [customer_row(2, "a@x.com", "1"), customer_row(3, "b@x.com", "bad"), customer_row(4, "c@x.com", "3")]

    outcome = reconcile_with(coordinator, rows)

    assert outcome.path is PersistencePath.DIRECT
    assert [item.account.account_number for item in outcome.results] == ["1", "3"]
    assert [failure.row_number for failure in outcome.failures] == [3]
    assert outcome.partial
    with Session(engine) as session:
        # the user written before the failing account insert stays committed
        assert session.exec(select(User).where(User.email == "b@x.com")).first() is not None
        assert len(session.exec(select(BalanceRecord)).all()) == 2


def test_transactional_path_is_all_or_nothing(engine, monkeypatch):
    original = OrmEntityStore.add_balance_record
    calls = {"count": 0}

    def add_balance_record(self, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise RuntimeError("balance insert rejected")
        return original(self, **kwargs)

    monkeypatch.setattr(OrmEntityStore, "add_balance_record", add_balance_record)
    coordinator = PersistenceCoordinator(TransactionalStage(engine), DirectStage(engine))

    outcome = reconcile_with(coordinator, [customer_row(2, "a@x.com", "1"), customer_row(3, "b@x.com", "2")])

    # the rolled-back transaction left nothing behind; the direct path wrote both rows
    assert outcome.path is PersistencePath.DIRECT
    with Session(engine) as session:
        assert len(session.exec(select(User)).all()) == 2
        assert len(session.exec(select(BalanceRecord)).all()) == 2


def test_both_paths_failing_is_a_persistence_failure(broken_engine):
    coordinator = PersistenceCoordinator(TransactionalStage(broken_engine), DirectStage(broken_engine))

    with pytest.raises(PersistenceFailure) as excinfo:
        reconcile_with(coordinator, [customer_row(2, "a@x.com", "1")])

    assert excinfo.value.retryable
    assert excinfo.value.context["failed_rows"] == [2]
