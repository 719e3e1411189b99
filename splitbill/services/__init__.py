"""
                        Services Module

Contains the settlement engine and its collaborators with the hybrid
architecture pattern. Each collaborator has an in-memory/mock
(development) and a real (staging, production) implementation.

Services:
    - settlement: Remaining items, selection, payment composer, status
    - store: Session/order store and payment ledger persistence
    - changebus: "Data changed elsewhere" signals between terminals
    - notifications: Operator-facing notification sink
    - receipts: Partial receipts and the Excel receipt ledger
"""
