from quietstats.rules.loader import load_rules
from quietstats.rules.models import Rules

__all__ = ["Rules", "load_rules"]
