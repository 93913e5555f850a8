"""Memberships domain - tiers, subscriptions and the monthly credit ledger"""
