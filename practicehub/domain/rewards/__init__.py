"""Rewards domain - append-only points ledger, redemption catalog and tiers"""
