"""
Repair order reward and commission settlement engine.

    from settlement.services.settlement_engine import calculate_settlement
    from settlement.services.rule_loader import default_rule_snapshot
"""

__version__ = "1.0.0"
