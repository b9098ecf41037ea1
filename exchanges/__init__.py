"""
Exchange Connectors Package

This package contains exchange-specific modules built on the core pipeline.
Each exchange has its own subfolder with:
- api_client.py: outward client wiring the pipeline together
- signer.py: request authentication scheme
"""
