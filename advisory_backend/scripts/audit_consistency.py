from __future__ import annotations

import argparse
import json
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import Session, select

from ..database import engine
from ..models import Account, BalanceRecord, OverduePaymentRecord, OverduePaymentUpload, User
from ..roles import normalize_email
from ..timezone_utils import today_kst


@dataclass
class AuditIssue:
    severity: str
    category: str
    entity: str
    entity_id: Optional[Any]
    message: str
    details: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "severity": self.severity,
            "category": self.category,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass
class AuditReport:
    stats: Dict[str, int]
    issues: List[AuditIssue]

    @property
    def issue_count(self) -> int:
        return len(self.issues)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stats": self.stats,
            "issue_count": self.issue_count,
            "issues": [issue.as_dict() for issue in self.issues],
        }


def run_audit(session: Session) -> AuditReport:
    users = session.exec(select(User)).all()
    accounts = session.exec(select(Account)).all()
    balances = session.exec(select(BalanceRecord)).all()
    overdue = session.exec(select(OverduePaymentRecord)).all()
    latest_upload = session.exec(
        select(OverduePaymentUpload).order_by(OverduePaymentUpload.uploaded_at.desc())
    ).first()

    stats = {
        "users": len(users),
        "accounts": len(accounts),
        "balance_records": len(balances),
        "overdue_payments": len(overdue),
    }

    issues: List[AuditIssue] = []

    emails: Dict[str, List[int]] = defaultdict(list)
    for user in users:
        emails[normalize_email(user.email)].append(user.id)
    for email, ids in emails.items():
        if len(ids) > 1:
            issues.append(
                AuditIssue(
                    severity="error",
                    category="duplicate_email",
                    entity="user",
                    entity_id=ids[0],
                    message=f"E-mail {email} is shared by {len(ids)} users",
                    details={"user_ids": ids},
                )
            )

    batches = Counter(record.batch_id for record in overdue)
    if len(batches) > 1:
        issues.append(
            AuditIssue(
                severity="error",
                category="multiple_batches",
                entity="overdue_payment",
                entity_id=None,
                message=f"{len(batches)} overdue batches are present; exactly one is expected",
                details={"batches": dict(batches)},
            )
        )
    if latest_upload and not overdue:
        issues.append(
            AuditIssue(
                severity="error",
                category="emptied_batch_table",
                entity="overdue_payment_upload",
                entity_id=latest_upload.id,
                message="Overdue table is empty although an upload was recorded; re-upload the latest file",
                details={"file_name": latest_upload.file_name, "record_count": latest_upload.record_count},
            )
        )
    elif latest_upload and latest_upload.id not in batches:
        issues.append(
            AuditIssue(
                severity="warning",
                category="stale_batch",
                entity="overdue_payment_upload",
                entity_id=latest_upload.id,
                message="The most recent upload's batch is not the one in the table",
                details={"present_batches": list(batches)},
            )
        )

    history_by_account: Dict[int, int] = Counter(record.account_id for record in balances)
    for account in accounts:
        if not history_by_account.get(account.id):
            issues.append(
                AuditIssue(
                    severity="warning",
                    category="no_balance_history",
                    entity="account",
                    entity_id=account.id,
                    message=f"Account {account.account_number} has no balance records",
                )
            )

    today = today_kst()
    for record in balances:
        if record.record_date > today:
            issues.append(
                AuditIssue(
                    severity="warning",
                    category="future_record_date",
                    entity="balance_record",
                    entity_id=record.id,
                    message=f"Balance record is dated {record.record_date.isoformat()}, after today",
                    details={"account_id": record.account_id},
                )
            )

    return AuditReport(stats=stats, issues=issues)


def format_issue(issue: AuditIssue) -> str:
    prefix = f"[{issue.severity.upper()}] {issue.entity}#{issue.entity_id or '-'} {issue.category}"
    if issue.details:
        return f"{prefix}: {issue.message} | {json.dumps(issue.details, ensure_ascii=False, default=str)}"
    return f"{prefix}: {issue.message}"


def print_report(report: AuditReport) -> None:
    stats = report.stats
    print(
        "Audited users={users}, accounts={accounts}, balance_records={balance_records}, "
        "overdue_payments={overdue_payments}".format(**stats)
    )
    if not report.issues:
        print("No consistency issues detected.")
        return
    print(f"Found {report.issue_count} issues:")
    for idx, issue in enumerate(report.issues, start=1):
        print(f"{idx:02d}. {format_issue(issue)}")


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Audit data consistency for the advisory operations console")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the audit report as JSON",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    with Session(engine) as session:
        report = run_audit(session)
    if args.json:
        print(json.dumps(report.as_dict(), ensure_ascii=False, indent=2, default=str))
    else:
        print_report(report)
    return 1 if report.issue_count else 0


if __name__ == "__main__":
    raise SystemExit(main())
