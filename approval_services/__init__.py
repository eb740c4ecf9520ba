"""
approval_services -- transactional API over the approval kernel.

``ApprovalAPI`` is the in-process call surface; ``ApprovalServices`` wires
the kernel services for one session.
"""

from approval_services.approval_api import ApprovalAPI, ApprovalServices

__all__ = [
    "ApprovalAPI",
    "ApprovalServices",
]
