"""
Regulatory Truth Services
=========================

Services:
- regulatory_truth: evidence capture, fact extraction, rule composition,
  review, arbitration and versioned release of compliance rules
"""

__all__ = [
    "regulatory_truth",
]
