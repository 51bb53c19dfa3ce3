"""
Campus Print Backend - settlement and top-up API for self-service printing

This package provides a FastAPI-based web service for a campus printing
platform. It covers the money-like parts of the system:

- Registering uploaded documents and detecting their page count once
- Normalizing office documents to PDF (remote service, then local LibreOffice)
- Pricing print requests in page units from page ranges, copies and paper size
- Settling print jobs against a student's page balance atomically
- Issuing bank-transfer top-up intents and reconciling gateway webhooks
  exactly once

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - settlement: Print-job settlement pipeline
    - ledger: Atomic balance debit/credit
    - webhook: Payment notification reconciliation
    - payments: Top-up payment intents
    - documents: Document registration and page detection
    - converter: Format normalization strategies
    - page_counter, page_range, billing: Page counting and pricing
    - database: SQLite ledger store
    - configuration: Config loading (OmegaConf + .env)

Usage:
    Run the API server with:
        uvicorn campus_print_backend.main:app --host 0.0.0.0 --port 8000

    Or use the development script:
        uv run uvicorn campus_print_backend.main:app --reload
"""
