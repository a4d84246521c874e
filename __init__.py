"""
Excel Export Service

This package provides an HTTP API that converts arrays of JSON records into
xlsx workbooks. Columns are inferred from the first record or supplied by the
caller, every field is coerced into a typed cell, and rows are written in
fixed-size batches to keep memory bounded.

Key modules:
- main.py: FastAPI application with API endpoints
- excel_generator.py: Header resolution, cell coercion and batch writing
- config.py: Environment based settings
- utils/result.py: Result pattern implementation for error handling
- utils/cells.py: Typed cell values
- utils/sheet_writer.py: openpyxl backed worksheet writer
"""
