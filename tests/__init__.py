"""
Marketplace backend test suite.

Test Categories:
- unit: servicios y helpers sin HTTP
- integration: endpoints, CLI y flujos completos contra SQLite

Run tests with:
    pytest                          # Run all tests
    pytest -m unit                  # Run only unit tests
    pytest -m integration           # Run only integration tests
"""
