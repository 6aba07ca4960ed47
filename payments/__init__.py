"""Blueprint de pagos: checkout, confirmación y webhooks."""
