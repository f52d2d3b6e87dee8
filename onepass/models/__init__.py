"""
models/__init__.py - imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.

Import order matters: service_requests references users and b2b_companies.
"""
from onepass.models.user import UserORM
from onepass.models.company import CompanyORM
from onepass.models.service_request import ServiceRequestORM

__all__ = ["UserORM", "CompanyORM", "ServiceRequestORM"]
