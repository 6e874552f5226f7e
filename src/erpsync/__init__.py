"""
ERP staging sync engine.

An XML-RPC wire client for Odoo-style ERPs and a three-phase
(partners -> invoices -> invoice lines) synchronization orchestrator that
stages remote records locally.
"""

__version__ = "0.1.0"
