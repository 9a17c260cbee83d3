"""Receipt counter: last receipt sequence issued per calendar month."""

from sqlalchemy import Column, Integer, String

from fee_ledger.db.session import Base


class ReceiptCounter(Base):
    __tablename__ = "receipt_counters"

    period = Column(String(6), primary_key=True)  # YYYYMM
    last_value = Column(Integer, nullable=False, default=0)
