import sys
from datetime import datetime
from io import BytesIO
from pathlib import Path

# Ensure project root is on sys.path so `import advisory_backend` works without an install
ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest
import xlwt
from openpyxl import Workbook
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from advisory_backend import models  # noqa: F401  registers the tables


CUSTOMER_HEADERS = ["이름", "이메일", "계좌번호", "포트폴리오명", "말일잔고", "전화번호", "계약일"]
OVERDUE_HEADERS = [
    "계좌명",
    "계약일",
    "대표MP명",
    "계좌번호",
    "수수료출금계좌",
    "전일잔고",
    "자문수수료계",
    "납입액",
    "미납금액",
    "유치자",
    "연락처",
    "연체여부(확인)",
]


def memory_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine():
    engine = memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def broken_engine():
    # an empty database: every table access fails
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def make_workbook():
    def build(headers, rows) -> bytes:
        workbook = Workbook()
        sheet = workbook.active
        sheet.append(list(headers))
        for row in rows:
            sheet.append(list(row))
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return build


@pytest.fixture
def make_legacy_workbook():
    date_style = xlwt.easyxf(num_format_str="YYYY-MM-DD")

    def build(headers, rows) -> bytes:
        workbook = xlwt.Workbook()
        sheet = workbook.add_sheet("Sheet1")
        for column, header in enumerate(headers):
            sheet.write(0, column, header)
        for row_index, row in enumerate(rows, start=1):
            for column, value in enumerate(row):
                if value is None:
                    continue
                if isinstance(value, datetime):
                    sheet.write(row_index, column, value, date_style)
                else:
                    sheet.write(row_index, column, value)
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return build
