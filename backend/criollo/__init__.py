"""Floor coordination backend for El Criollo: tables, orders, invoices and reservations."""

__version__ = "0.1.0"
