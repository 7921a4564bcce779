"""
Plan reference data model
"""
from sqlalchemy import Column, Integer, String

from ..base import Base


class Plan(Base):
    """Billing plan with its monthly job quota (read-only reference data)"""
    __tablename__ = "plans"

    code = Column(String(32), primary_key=True)
    name = Column(String(64), nullable=False)
    monthly_quota = Column(Integer, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
