"""
einvoice_services -- Package init and public API.

Responsibility:
    Composition of kernel services into the running LHDN integration:
    the DI root and the status polling pass.

Architecture position:
    Services -- orchestration over einvoice_kernel and einvoice_config.

    Dependency direction:
        einvoice_services/ -> einvoice_config/  (allowed)
        einvoice_services/ -> einvoice_kernel/  (allowed)
        einvoice_kernel/   -> einvoice_services/ (FORBIDDEN)
"""

from einvoice_services.integration import LhdnIntegration
from einvoice_services.status_poller import PollSummary, StatusPoller

__all__ = [
    "LhdnIntegration",
    "PollSummary",
    "StatusPoller",
]
