"""
Questline Test Suite
====================

Test Organization
-----------------
- tests/unit/          : Unit tests with mocks or a throwaway SQLite database
- tests/unit/domain/   : Pure domain model tests (no database)
- tests/integration/   : Integration tests with testcontainers (real PostgreSQL)
- tests/conftest.py    : Fixtures, catalog factories and event recorders

Testing Philosophy
------------------
- Unit tests: Fast, isolated, test business logic
- Integration tests: Slower, test row locking and unique indexes for real
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
