"""SeatLedger: seat inventory, checkout and payment reconciliation service."""
