"""
TradeAcademy test suite

- unit: services against an in-memory database
- api: endpoints through the Flask test client

Run all tests: pytest
Run one group: pytest -m unit
"""
