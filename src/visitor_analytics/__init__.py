"""
Visitor Analytics - privacy-aware usage analytics.

This package provides page-view and session tracking with:
- Consent-gated data capture
- Bot, device, browser and OS classification
- Anonymized persistence of page views and sessions
- Statistical aggregation for dashboards
- GDPR export/erasure and retention-based cleanup
"""

__version__ = "0.1.0"
__author__ = "Visitor Analytics Team"

__all__ = [
    '__version__',
]
