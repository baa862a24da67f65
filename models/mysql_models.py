from sqlalchemy import Column, String, JSON, DateTime
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class BillingPlanRow(Base):
    __tablename__ = "billing_plans"

    uuid = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    kind = Column(String(16), nullable=False, default="DYNAMIC")
    resources = Column(JSON, nullable=False)
    products = Column(JSON, nullable=False)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
