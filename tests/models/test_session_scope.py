"""
session_scope() -- commit on success, roll back and re-raise on error.

Uses ``session_factory`` for teardown cleanup since both paths really commit.
"""

import pytest

from approval_kernel.db.engine import get_engine, is_postgres, session_scope
from approval_kernel.domain.document import ModuleType
from approval_kernel.exceptions import DocumentNotFoundError
from approval_kernel.services.document_service import DocumentService


def test_commits_on_normal_exit(session_factory, deterministic_clock, org):
    with session_scope() as session:
        doc = DocumentService(session, deterministic_clock).create_document(
            ModuleType.LEAVE, org.company_id, org.applicant_id,
        )

    check = session_factory()
    assert DocumentService(check, deterministic_clock).get_document(doc.document_id).title == ""


def test_rolls_back_and_reraises(session_factory, deterministic_clock, org, captured_logs):
    created = []
    with pytest.raises(RuntimeError, match="boom"):
        with session_scope() as session:
            created.append(
                DocumentService(session, deterministic_clock).create_document(
                    ModuleType.LEAVE, org.company_id, org.applicant_id,
                )
            )
            raise RuntimeError("boom")

    check = session_factory()
    with pytest.raises(DocumentNotFoundError):
        DocumentService(check, deterministic_clock).get_document(created[0].document_id)
    assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


def test_dialect_flag_matches_engine(db_engine):
    assert is_postgres() == (get_engine().dialect.name == "postgresql")
