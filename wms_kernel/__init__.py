"""
WMS Kernel - lifecycle and money primitives for purchasing and inbound
shipments.

- Exact integer-cent money with loss-free proportional allocation
- Declarative workflow types shared by every lifecycle
- Incoterms charge-applicability lookup
- Typed exceptions and structured JSON logging
"""

__version__ = "0.1.0"
