"""Ticket workflow: transition matrix, severity classification and persistence."""
