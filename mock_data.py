"""Mock responses for testing without API calls."""

MOCK_RESPONSE = """```json
{
  "findings": [
    {
      "severity": "warning",
      "line_start": 1,
      "line_end": 1,
      "snippet": "<?php",
      "description": "Mock finding for testing",
      "fix": "",
      "confidence": 50
    }
  ]
}
```"""
