"""Blueprint de métricas de correo."""
