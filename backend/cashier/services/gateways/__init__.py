from cashier.services.gateways.braintree import BraintreeGateway

__all__ = [
    "BraintreeGateway",
]
