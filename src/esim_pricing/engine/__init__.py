"""Engine subpackage - core pricing logic and resolution."""
from .pricing_engine import PricingEngine, apply_markup, resolve_price
from .models import PricingContext, PricingRule, PriceResult

__all__ = ['PricingEngine', 'apply_markup', 'resolve_price', 'PricingContext', 'PricingRule', 'PriceResult']
