# ordersync/__init__.py
"""
Active-order reconciliation package.

Provides:
- Core enums, models and payload normalization for backend orders
- Per-view membership rules and the ordered working set
- REST data source and hub push feed adapters
- The reconciliation engine, its fallback poller and a multi-view manager
- A small FastAPI control surface exposing snapshots
"""
