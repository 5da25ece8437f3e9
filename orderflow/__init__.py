"""Order, payment and delivery lifecycle engine for digital products."""

__version__ = "0.1.0"
