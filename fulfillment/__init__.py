# fulfillment/__init__.py
"""
Order fulfillment & stock sync subsystem package.

Provides:
- Configuration & endpoints for the Bsale commerce API and the order store
- Core domain enums & models (orders, items, stock records, inventory pages)
- Stores (order/stock gateways) and services: Bsale client, document builder,
  order reconciler, stock reconciler and the scheduler that drives them
"""
