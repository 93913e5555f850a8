"""Billing domain - payment processor client and webhook reconciliation"""
