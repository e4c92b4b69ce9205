"""Storage lifecycle policies.

Components:
- aging: quarter arithmetic and the aging predicate
- states: HOT -> COOL -> EXPIRED partition state machine
- policy: policy definition and archive tiers
- registry: policy catalog and table bindings
- evaluator: policy evaluation and the daily scheduler

registry and evaluator depend on the storage layer and are imported
from their modules directly.
"""

from . import aging, policy, states

__all__ = ["aging", "policy", "states"]
