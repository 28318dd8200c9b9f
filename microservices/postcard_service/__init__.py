"""
Postcard Service

Direct-mail postcard campaign microservice providing:
- Campaign lifecycle (draft, schedule, send, completion)
- Recipient registry with suppression gating (recent order, recent mail, do-not-mail)
- Postage cost estimation and ledger charging
- Vendor dispatch with idempotency keys and audited, redacted API logs
- Periodic delivery status reconciliation

Port: 8290
"""

__version__ = "1.0.0"
__service__ = "postcard_service"
