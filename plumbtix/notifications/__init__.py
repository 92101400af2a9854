"""Recipient resolution, delivery and audit of outbound notifications."""
