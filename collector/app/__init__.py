"""Unique client collector: ping ingestion and daily/monthly unique counts."""
